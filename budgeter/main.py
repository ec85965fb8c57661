import argparse

from budgeter import config
from budgeter.cli import BudgetCLI


def main(argv=None):
    parser = argparse.ArgumentParser(description="Daily budget tracker")
    parser.add_argument("--save", default=config.DEFAULT_SAVE_NAME, help="save file to open")
    parser.add_argument("--no-autosave", action="store_true", help="only save on the 'save' command")
    args = parser.parse_args(argv)

    config.ensure_data_directories()
    BudgetCLI(save_name=args.save, autosave=not args.no_autosave).cmdloop()


if __name__ == "__main__":
    main()
