from kharcha.cli import KharchaCLI
from kharcha.config import STORE_PATH, configure_logging
from kharcha.engine import FinanceEngine
from kharcha.storage import JsonStore


def main():
    configure_logging()
    KharchaCLI(FinanceEngine(JsonStore(STORE_PATH))).cmdloop()


if __name__ == "__main__":
    main()
