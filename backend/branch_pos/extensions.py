# Overview: Flask extension instances for the head-office database, migrations, and branch routing.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.connection_router import BranchRouter

db = SQLAlchemy()
migrate = Migrate()
branch_router = BranchRouter()
