from scheduler_e2e.cli import main

if __name__ == "__main__":
    main()
