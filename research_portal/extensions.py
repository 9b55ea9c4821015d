"""Application-wide Flask extensions."""

from flask_sqlalchemy import SQLAlchemy


# Shared SQLAlchemy handle for the SQL session store. It is only bound to an
# engine when :func:`research_portal.create_app` selects that backend.
db = SQLAlchemy()
