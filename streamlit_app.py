"""Streamlit entrypoint: set up logging, then render the overview screen."""

from Home import app_secrets
from Home import main as render_home
from qbuilder.config import configure_logging, get_log_level


def main() -> None:
    configure_logging(get_log_level(app_secrets()))
    render_home()


if __name__ == "__main__":
    main()
