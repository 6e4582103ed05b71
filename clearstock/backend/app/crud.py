import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConflictOrTransient, NotFound, ValidationError
from app.models import Restaurant, Category, Location, utcnow
from app.schemas import CategoryCreate, CategoryThresholdUpdate, LocationCreate, RestaurantNameUpdate, ThresholdUpdate

logger = logging.getLogger(__name__)


async def _commit_or_conflict(db: AsyncSession, duplicate_message: str):
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ValidationError(duplicate_message) from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise ConflictOrTransient("Could not save settings, please try again") from e


async def get_restaurant(db: AsyncSession, restaurant_id: int) -> Restaurant:
    result = await db.execute(select(Restaurant).where(Restaurant.id == restaurant_id))
    restaurant = result.scalars().first()
    if not restaurant:
        raise NotFound(f"Restaurant {restaurant_id} not found")
    return restaurant


async def update_thresholds(db: AsyncSession, restaurant: Restaurant, thresholds: ThresholdUpdate) -> Restaurant:
    restaurant.alert_days_before_expiry = thresholds.alert_days_before_expiry
    restaurant.warning_days_before_expiry = thresholds.warning_days_before_expiry
    restaurant.updated_at = utcnow()
    await _commit_or_conflict(db, "Invalid thresholds")
    logger.info(
        f"Restaurant {restaurant.id} thresholds set to urgent={restaurant.alert_days_before_expiry} "
        f"warning={restaurant.warning_days_before_expiry}"
    )
    return restaurant


async def update_restaurant_name(db: AsyncSession, restaurant: Restaurant, update: RestaurantNameUpdate) -> Restaurant:
    name = (update.name or "").strip()
    if not name:
        raise ValidationError("Please provide a restaurant name")
    restaurant.name = name
    restaurant.updated_at = utcnow()
    await _commit_or_conflict(db, "Invalid restaurant name")
    logger.info(f"Restaurant {restaurant.id} renamed to {name!r}")
    return restaurant


async def list_categories(db: AsyncSession, restaurant_id: int) -> List[Category]:
    result = await db.execute(
        select(Category).where(Category.restaurant_id == restaurant_id).order_by(Category.name)
    )
    return list(result.scalars().all())


async def get_category(db: AsyncSession, restaurant_id: int, category_id: int) -> Category:
    result = await db.execute(
        select(Category).where(Category.id == category_id, Category.restaurant_id == restaurant_id)
    )
    category = result.scalars().first()
    if not category:
        raise NotFound(f"Category {category_id} not found")
    return category


async def create_category(db: AsyncSession, restaurant_id: int, category: CategoryCreate) -> Category:
    db_category = Category(
        restaurant_id=restaurant_id,
        name=category.name,
        alert_days_before_expiry=category.alert_days_before_expiry,
        warning_days_before_expiry=category.warning_days_before_expiry,
    )
    db.add(db_category)
    await _commit_or_conflict(db, f'Category "{category.name}" already exists')
    return db_category


async def update_category_thresholds(
    db: AsyncSession, restaurant_id: int, category_id: int, thresholds: CategoryThresholdUpdate
) -> Category:
    # None clears the override, falling back to the restaurant default
    db_category = await get_category(db, restaurant_id, category_id)
    db_category.alert_days_before_expiry = thresholds.alert_days_before_expiry
    db_category.warning_days_before_expiry = thresholds.warning_days_before_expiry
    await _commit_or_conflict(db, "Invalid thresholds")
    return db_category


async def delete_category(db: AsyncSession, restaurant_id: int, category_id: int) -> Category:
    # batches keep living; the foreign key sets their category to NULL
    db_category = await get_category(db, restaurant_id, category_id)
    await db.delete(db_category)
    await _commit_or_conflict(db, "Category could not be deleted")
    logger.info(f"Deleted category {category_id} of restaurant {restaurant_id}")
    return db_category


async def list_locations(db: AsyncSession, restaurant_id: int) -> List[Location]:
    result = await db.execute(
        select(Location).where(Location.restaurant_id == restaurant_id).order_by(Location.name)
    )
    return list(result.scalars().all())


async def get_location(db: AsyncSession, restaurant_id: int, location_id: int) -> Location:
    result = await db.execute(
        select(Location).where(Location.id == location_id, Location.restaurant_id == restaurant_id)
    )
    location = result.scalars().first()
    if not location:
        raise NotFound(f"Location {location_id} not found")
    return location


async def create_location(db: AsyncSession, restaurant_id: int, location: LocationCreate) -> Location:
    db_location = Location(restaurant_id=restaurant_id, name=location.name)
    db.add(db_location)
    await _commit_or_conflict(db, f'Location "{location.name}" already exists')
    return db_location


async def delete_location(db: AsyncSession, restaurant_id: int, location_id: int) -> Location:
    db_location = await get_location(db, restaurant_id, location_id)
    await db.delete(db_location)
    await _commit_or_conflict(db, "Location could not be deleted")
    logger.info(f"Deleted location {location_id} of restaurant {restaurant_id}")
    return db_location
