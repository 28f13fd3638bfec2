from multitask.cli import main

main()
