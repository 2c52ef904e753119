from poolvault.cli import main

main()
