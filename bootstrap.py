import logging

from academy.db import Base, SessionLocal, engine
from academy.services.bootstrap_service import run_bootstrap
from academy.services.file_storage import ensure_upload_dirs


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


def main():
    Base.metadata.create_all(bind=engine)
    upload_root = ensure_upload_dirs()
    logger.info('Upload directories ready at %s', upload_root)
    db = SessionLocal()
    try:
        result = run_bootstrap(db)
        if result['admin'].get('seeded'):
            logger.info('Bootstrap executed: %s', result)
        else:
            logger.info('Bootstrap skipped: %s', result)
    finally:
        db.close()


if __name__ == '__main__':
    main()
