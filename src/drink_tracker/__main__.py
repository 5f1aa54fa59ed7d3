from drink_tracker.cli import main

main()
