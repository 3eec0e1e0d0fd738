import os


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev_secret_key')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URI', 'sqlite:///aftersales.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" keeps parts and cases in the database, "memory" in the process
    STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'sql')

    DEFAULT_PART_UNIT = os.getenv('DEFAULT_PART_UNIT', 'pcs')
    DEFAULT_LOW_STOCK_THRESHOLD = int(os.getenv('DEFAULT_LOW_STOCK_THRESHOLD', '10'))

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
