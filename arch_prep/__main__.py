# arch_prep/__main__.py
from arch_prep.cli import app


def main():
    """
    Main application
    """
    app(prog_name="arch-prep")


if __name__ == "__main__":
    main()
