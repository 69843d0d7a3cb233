"""
Tickets link a user to an event and to some of its activities. Creating,
editing and deleting a ticket keeps the activity seat counters in step.
"""
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

import audit
import seats
from authz_provider import (
    MANAGE_TICKETS,
    OPERATE,
    OWN,
    AuthorizationProvider,
    ResourceScope,
)
from core_deps import (
    get_authz_provider,
    get_current_user,
    get_db,
    load_live,
    populate,
    populate_one,
    require_admin,
)
from event_routes import EVENT_NOT_FOUND, USER_SUMMARY
from schemas import TICKET_CREATE_SCHEMA, TICKET_UPDATE_SCHEMA, read_json_body
from utils import make_json_serializable, object_id_or_404, safe_objectid, safe_objectid_list

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tickets", tags=["Tickets"])

ENTITY = "Ticket"
TICKET_NOT_FOUND = "Ticket not found"


async def _populate_ticket(db: AsyncIOMotorDatabase, ticket: Dict[str, Any],
                           with_user: bool = True, with_event: bool = True) -> Dict[str, Any]:
    if with_user:
        ticket["user"] = await populate_one(db, "users", ticket.get("user"), USER_SUMMARY)
    if with_event:
        ticket["event"] = await populate_one(db, "events", ticket.get("event"), {"title": 1})
    ticket["activities"] = await populate(db, "activities", ticket.get("activities"), {"title": 1})
    return ticket


async def _populate_all(db: AsyncIOMotorDatabase, tickets: List[Dict[str, Any]], **kwargs) -> List[Dict[str, Any]]:
    return [await _populate_ticket(db, ticket, **kwargs) for ticket in tickets]


async def _ticket_event(db: AsyncIOMotorDatabase, ticket: Dict[str, Any]) -> Dict[str, Any]:
    """The event a ticket belongs to; a ticket of a deleted event has no managers left."""
    return await db.events.find_one({"_id": ticket.get("event"), "isDeleted": False}) or {}


@router.post("", name="create_ticket")
async def create_ticket(
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    data = await read_json_body(request, TICKET_CREATE_SCHEMA)
    event = await load_live(db, "events", data["event"], EVENT_NOT_FOUND)
    authz.require(user, ResourceScope.for_event(event), MANAGE_TICKETS,
                  detail="You do not have permission to create tickets for this event")

    holder_id = safe_objectid(data["user"], "user")
    if await db.users.find_one({"_id": holder_id, "isDeleted": False}, {"_id": 1}) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    activity_ids = safe_objectid_list(data.get("activities"), "activities")
    await seats.reserve_seats(db, activity_ids)

    document = {
        "type": data.get("type", 0),
        "title": data["title"],
        "event": event["_id"],
        "role": data.get("role", "assistente"),
        "price": data.get("price", 0),
        "description": data.get("description", ""),
        "user": holder_id,
        "activities": activity_ids,
    }
    try:
        ticket = await audit.insert_entity(db, "tickets", ENTITY, document, user["_id"])
    except Exception:
        await seats.release_seats(db, activity_ids)
        raise

    await db.users.update_one({"_id": holder_id}, {"$push": {"tickets": ticket["_id"]}})
    await db.events.update_one({"_id": event["_id"]}, {"$addToSet": {"assistants": holder_id}})
    logger.info(f"Ticket {ticket['_id']} issued to {holder_id} for event {event['_id']}.")
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=make_json_serializable(ticket))


@router.get("", name="list_tickets")
async def list_tickets(
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query: Dict[str, Any] = {"isDeleted": False}
    if user.get("role") != "admin":
        operated = await db.events.find(
            {"operators.user": user["_id"], "isDeleted": False}, {"_id": 1}
        ).to_list(length=None)
        query["event"] = {"$in": [event["_id"] for event in operated]}

    tickets = await db.tickets.find(query).to_list(length=None)
    return make_json_serializable(await _populate_all(db, tickets))


@router.get("/user/{user_id}", name="list_user_tickets")
async def list_user_tickets(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    holder_id = object_id_or_404(user_id, "User not found")
    tickets = await db.tickets.find({"user": holder_id, "isDeleted": False}).to_list(length=None)

    if holder_id != user["_id"] and user.get("role") != "admin":
        event_ids = list({ticket["event"] for ticket in tickets})
        operates_one = await db.events.find_one(
            {"_id": {"$in": event_ids}, "operators.user": user["_id"], "isDeleted": False}, {"_id": 1}
        )
        if not operates_one:
            logger.warning(f"User {user['_id']} denied access to the tickets of {holder_id}.")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to view the tickets of this user",
            )

    return make_json_serializable(await _populate_all(db, tickets, with_user=False))


@router.get("/event/{event_id}", name="list_event_tickets")
async def list_event_tickets(
    event_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    event = await load_live(db, "events", event_id, EVENT_NOT_FOUND)
    authz.require(user, ResourceScope.for_event(event), OPERATE,
                  detail="You do not have permission to view the tickets of this event")

    tickets = await db.tickets.find({"event": event["_id"], "isDeleted": False}).to_list(length=None)
    return make_json_serializable(await _populate_all(db, tickets, with_event=False))


@router.get("/{ticket_id}", name="get_ticket")
async def get_ticket(
    ticket_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    ticket = await load_live(db, "tickets", ticket_id, TICKET_NOT_FOUND)
    if not authz.check(user, ResourceScope.owned_by(ticket.get("user")), OWN):
        scope = ResourceScope.for_event(await _ticket_event(db, ticket))
        authz.require(user, scope, OPERATE, detail="You do not have permission to view this ticket")
    return make_json_serializable(await _populate_ticket(db, ticket))


@router.put("/{ticket_id}", name="update_ticket")
async def update_ticket(
    ticket_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    ticket = await load_live(db, "tickets", ticket_id, TICKET_NOT_FOUND)
    authz.require(user, ResourceScope.for_event(await _ticket_event(db, ticket)), MANAGE_TICKETS,
                  detail="You do not have permission to update this ticket")
    data = await read_json_body(request, TICKET_UPDATE_SCHEMA)

    changes: Dict[str, Any] = {}
    if data.get("title"):
        changes["title"] = data["title"]
    for field in ("type", "role", "price", "description"):
        if field in data:
            changes[field] = data[field]

    added: List[Any] = []
    removed: List[Any] = []
    if "activities" in data:
        new_ids = safe_objectid_list(data["activities"], "activities")
        old_ids = list(ticket.get("activities") or [])
        added = [a for a in new_ids if a not in old_ids]
        removed = [a for a in old_ids if a not in new_ids]
        # Take the new seats first so a full activity leaves the ticket untouched
        await seats.reserve_seats(db, added)
        changes["activities"] = new_ids

    updated = await audit.apply_change(
        db, "tickets", ENTITY, {"_id": ticket["_id"], "isDeleted": False},
        user["_id"], audit.UPDATE, set_fields=changes,
    )
    if updated is None:
        await seats.release_seats(db, added)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TICKET_NOT_FOUND)

    await seats.release_seats(db, removed)
    return make_json_serializable(await _populate_ticket(db, updated))


@router.delete("/{ticket_id}", name="delete_ticket")
async def delete_ticket(
    ticket_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    ticket = await load_live(db, "tickets", ticket_id, TICKET_NOT_FOUND)
    deleted = await audit.soft_delete(db, "tickets", ENTITY, ticket["_id"], admin["_id"])
    if deleted is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TICKET_NOT_FOUND)

    await seats.release_seats(db, ticket.get("activities") or [])
    await db.users.update_one({"_id": ticket.get("user")}, {"$pull": {"tickets": ticket["_id"]}})
    return {"message": "Ticket removed"}
