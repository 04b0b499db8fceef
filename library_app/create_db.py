from .config import get_settings
from .database import make_engine, create_tables

if __name__ == '__main__':
    url = get_settings().database_url
    engine = make_engine(url)
    create_tables(engine)
    print(f'Database and tables created at {engine.url.render_as_string(hide_password=True)}')
