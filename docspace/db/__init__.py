"""DocSpace persistence — SQLAlchemy base, models and session scopes."""
