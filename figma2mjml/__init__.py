from figma2mjml.config import load_dotenv_file

__version__ = "0.1.0"

load_dotenv_file()
