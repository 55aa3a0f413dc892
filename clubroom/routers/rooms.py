from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import schemas, models
from ..core import slots
from ..deps import get_db, require_roles
from ..repository import BookingRepository

router = APIRouter(prefix="/rooms", tags=["rooms"])

ROOM_MANAGERS = (models.ROLE_ADMIN, models.ROLE_EDITOR)


def _get_room_or_404(db: Session, room_id: int) -> models.Room:
    room = db.query(models.Room).filter(models.Room.id == room_id).first()
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


def bookings_around(db: Session, room_id: int, day: date) -> List[models.Booking]:
    """Bookings of a room on ``day`` and its neighbours, for spill-over across midnight."""
    return BookingRepository(db).list(
        room_id=room_id,
        date_from=day - timedelta(days=1),
        date_to=day + timedelta(days=1),
    )


@router.post("/", response_model=schemas.RoomOut)
def create_room(
    room_in: schemas.RoomCreate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(*ROOM_MANAGERS)),
):
    """
    Create a new room.

    Only admins and editors can create rooms. The room name must be unique.

    Raises
    ------
    HTTPException
        - 400 if a room with the same name already exists.
    """
    existing = db.query(models.Room).filter(models.Room.name == room_in.name).first()
    if existing:
        raise HTTPException(status_code=400, detail="Room name already exists")
    room = models.Room(**room_in.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


@router.get("/", response_model=List[schemas.RoomOut])
def list_rooms(
    db: Session = Depends(get_db),
    min_capacity: Optional[int] = None,
    only_available: bool = False,
):
    """
    List rooms with optional filters.

    Parameters
    ----------
    min_capacity : int, optional
        Minimum room capacity.
    only_available : bool, optional
        If True, rooms under maintenance or occupied are left out.
    """
    query = db.query(models.Room)

    if min_capacity is not None:
        query = query.filter(models.Room.capacity >= min_capacity)
    if only_available:
        query = query.filter(models.Room.status == models.ROOM_AVAILABLE)

    return query.order_by(models.Room.name).all()


@router.get("/{room_id}", response_model=schemas.RoomOut)
def get_room(room_id: int, db: Session = Depends(get_db)):
    """Retrieve a single room by its ID."""
    return _get_room_or_404(db, room_id)


@router.get("/{room_id}/availability", response_model=schemas.AvailabilityResponse)
def room_availability(room_id: int, date: date, db: Session = Depends(get_db)):
    """
    Canonical sessions still free on a date.

    Each slot is returned with its natural end; a late-night slot ends on
    the following day.
    """
    room = _get_room_or_404(db, room_id)
    starts = slots.available_start_slots(room, date, bookings_around(db, room_id, date))
    result = []
    for start in starts:
        end_date, end_time = slots.slot_end(date, start)
        result.append(schemas.SlotOut(start_time=start, end_time=end_time, end_date=end_date))
    return schemas.AvailabilityResponse(room_id=room_id, date=date, slots=result)


@router.get("/{room_id}/availability/ends", response_model=schemas.EndTimesResponse)
def room_end_times(room_id: int, date: date, start_time: str, db: Session = Depends(get_db)):
    """
    End times a session starting at ``start_time`` may choose.

    Raises
    ------
    ValidationError
        - 400 if ``start_time`` is not a free canonical slot.
    """
    room = _get_room_or_404(db, room_id)
    ends = slots.available_end_slots(room, date, start_time, bookings_around(db, room_id, date))
    return schemas.EndTimesResponse(room_id=room_id, date=date, start_time=start_time, end_times=ends)


@router.patch("/{room_id}", response_model=schemas.RoomOut)
def update_room(
    room_id: int,
    room_update: schemas.RoomUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(*ROOM_MANAGERS)),
):
    """
    Update details of an existing room. *(Admin or Editor)*

    Allows modifying name, description, capacity and status.
    """
    room = _get_room_or_404(db, room_id)
    data = room_update.model_dump(exclude_unset=True)
    if "name" in data:
        clash = db.query(models.Room).filter(
            models.Room.name == data["name"], models.Room.id != room_id
        ).first()
        if clash:
            raise HTTPException(status_code=400, detail="Room name already exists")
    for field, value in data.items():
        setattr(room, field, value)
    db.commit()
    db.refresh(room)
    return room


@router.delete("/{room_id}")
def delete_room(
    room_id: int,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles(models.ROLE_ADMIN)),
):
    """
    Delete a room. *(Admin-only)*

    Rooms referenced by bookings keep their identity and cannot be deleted;
    put them under maintenance instead.
    """
    room = _get_room_or_404(db, room_id)
    if room.bookings:
        raise HTTPException(status_code=400, detail="Room has bookings; set it to maintenance instead")
    db.delete(room)
    db.commit()
    return {"detail": "Room deleted"}
