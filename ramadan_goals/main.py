import argparse
import logging
import sys
from ramadan_goals.core.app import RamadanApp

def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)  # Set initial level to DEBUG
        logging.debug("Basic logging initialized")


def main():
    setup_basic_logging()

    parser = argparse.ArgumentParser(description='Ramadan Goals API')
    parser.add_argument('--config',
                       help='Path to config file (default: ./config.yaml)')

    args = parser.parse_args()
    config_path = args.config if args.config else "config.yaml"

    app = RamadanApp(config_path=config_path)
    app.run()


if __name__ == "__main__":
    main()
