from app.database import get_db_sync
from app.models import Restaurant, StockEvent
from sqlalchemy.orm import Session
from sqlalchemy import select
from dataclasses import asdict
from app.analytics import build_report, month_bounds, parse_month_key
from app.celery_app import celery_app
from app.scanner import get_scanner
import logging

logger = logging.getLogger('celery')


@celery_app.task(name='tasks.generate_monthly_report')
def generate_monthly_report(restaurant_id: int, month: str = None):
    logger.info(f"Starting generate_monthly_report task for restaurant {restaurant_id}, month {month}")
    db: Session = next(get_db_sync())
    try:
        year, month_number = parse_month_key(month)
        start_date, end_date = month_bounds(year, month_number)
        logger.info(f"Querying events from {start_date} to {end_date}")
        events = db.execute(
            select(StockEvent).where(
                StockEvent.restaurant_id == restaurant_id,
                StockEvent.created_at >= start_date,
                StockEvent.created_at < end_date,
            ).order_by(StockEvent.created_at, StockEvent.id)
        ).scalars().all()
        logger.info(f"Found {len(events)} events")
        report = build_report(year, month_number, list(events))
        logger.info("Task completed successfully")
        return {
            "restaurant_id": restaurant_id,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            # enums are str subclasses, so the JSON serializer takes them as-is
            "report": asdict(report),
        }
    except Exception as e:
        logger.error(f"Task failed: {str(e)}")
        raise
    finally:
        db.close()


@celery_app.task(name='tasks.scan_expired_batches')
def scan_expired_batches():
    logger.info("Starting scan_expired_batches task")
    db: Session = next(get_db_sync())
    try:
        scanner = get_scanner()
        restaurant_ids = db.execute(select(Restaurant.id).order_by(Restaurant.id)).scalars().all()
        results = {}
        for restaurant_id in restaurant_ids:
            result = scanner.scan_sync(db, restaurant_id)
            results[str(restaurant_id)] = {
                "expired_count": result.expired_count,
                "expired_batch_ids": list(result.expired_batch_ids),
                "cached": result.cached,
            }
        logger.info(f"Scanned {len(restaurant_ids)} restaurants")
        return results
    except Exception as e:
        logger.error(f"Task failed: {str(e)}")
        raise
    finally:
        db.close()
