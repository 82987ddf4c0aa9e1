# Overview: Flask extension instances for database, migrations and the transient checkout store.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .checkout_store import CheckoutStore

db = SQLAlchemy()
migrate = Migrate()
checkout_store = CheckoutStore()
