"""
Seat accounting for activities.

takenSeats is only ever changed with conditional updates evaluated by MongoDB
itself, so two concurrent reservations cannot both take the last seat:

  reserve: match {seats: S, takenSeats: {$lt: S}} (or {seats: 0} when
           unlimited) and $inc takenSeats by 1
  release: match {takenSeats: {$gt: 0}} and $inc takenSeats by -1

`S` is the capacity read just before the update. If the capacity itself was
edited in between, the update matches nothing and the reservation is retried
against the fresh document.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Union

from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

logger = logging.getLogger(__name__)

UNLIMITED = "unlimited"
RESERVE_ATTEMPTS = 3

NO_SEATS_MESSAGE = "No seats available for this activity"
NO_OCCUPIED_SEATS_MESSAGE = "No occupied seats to release"


def has_room(activity: Mapping[str, Any]) -> bool:
    seats = activity.get("seats") or 0
    return seats == 0 or (activity.get("takenSeats") or 0) < seats


def available_seats(activity: Mapping[str, Any]) -> Union[int, str]:
    seats = activity.get("seats") or 0
    if seats == 0:
        return UNLIMITED
    return seats - (activity.get("takenSeats") or 0)


async def reserve_seat(db: AsyncIOMotorDatabase, activity_id: Any) -> Dict[str, Any]:
    """Take one seat on a live activity. Raises 404 if missing, 400 if full."""
    for attempt in range(1, RESERVE_ATTEMPTS + 1):
        activity = await db.activities.find_one({"_id": activity_id, "isDeleted": False})
        if activity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found")

        seats = activity.get("seats") or 0
        if seats == 0:
            condition: Dict[str, Any] = {"seats": {"$in": [0, None]}}
        else:
            if (activity.get("takenSeats") or 0) >= seats:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_SEATS_MESSAGE)
            condition = {"seats": seats, "takenSeats": {"$lt": seats}}

        updated = await db.activities.find_one_and_update(
            {"_id": activity_id, "isDeleted": False, **condition},
            {"$inc": {"takenSeats": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated

        logger.info(f"Seat reservation on activity {activity_id} lost a race (attempt {attempt}), re-reading.")

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_SEATS_MESSAGE)


async def release_seat(db: AsyncIOMotorDatabase, activity_id: Any, strict: bool = True) -> Dict[str, Any]:
    """
    Free one seat. With strict=True (the seat endpoints) a missing activity is
    a 404 and an empty one a 400; ticket bookkeeping passes strict=False and
    simply skips activities that have nothing to release.
    """
    entity_filter: Dict[str, Any] = {"_id": activity_id, "takenSeats": {"$gt": 0}}
    if strict:
        entity_filter["isDeleted"] = False

    updated = await db.activities.find_one_and_update(
        entity_filter,
        {"$inc": {"takenSeats": -1}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is not None:
        return updated

    if not strict:
        return {}

    exists = await db.activities.find_one({"_id": activity_id, "isDeleted": False}, {"_id": 1})
    if exists is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found")
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_OCCUPIED_SEATS_MESSAGE)


async def reserve_seats(db: AsyncIOMotorDatabase, activity_ids: Iterable[Any]) -> List[Dict[str, Any]]:
    """
    Reserve one seat on each activity, all or nothing.

    Every activity is checked for existence and room before any counter is
    touched; if a reservation still fails (a concurrent request took the last
    seat) the ones already taken are released again.
    """
    activity_ids = list(activity_ids)
    if not activity_ids:
        return []

    activities = await db.activities.find(
        {"_id": {"$in": activity_ids}, "isDeleted": False}
    ).to_list(length=None)

    if len(activities) != len(activity_ids):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="One or more activities are not valid")

    for activity in activities:
        if not has_room(activity):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"No seats available for activity: {activity.get('title')}",
            )

    reserved: List[Dict[str, Any]] = []
    try:
        for activity_id in activity_ids:
            reserved.append(await reserve_seat(db, activity_id))
    except HTTPException:
        for activity in reserved:
            await release_seat(db, activity["_id"], strict=False)
        logger.warning(f"Rolled back {len(reserved)} seat reservation(s) after a failed reservation.")
        raise

    return reserved


async def release_seats(db: AsyncIOMotorDatabase, activity_ids: Iterable[Any]) -> None:
    for activity_id in activity_ids:
        await release_seat(db, activity_id, strict=False)
