from marksheets.main import main

main()
