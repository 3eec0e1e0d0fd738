from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager

from utils import KeyedLocks

# Extensions are created unbound and attached in create_app()

# Database
db = SQLAlchemy()

# Sessions and the user loader
login_manager = LoginManager()

# Serialises stock mutations per part and edits per case
stock_locks = KeyedLocks()
