# services/injuries.py
"""
Injury reporting, tracking and resolution on the relationship graph.

Graph shape used here:

  (Player)-[:SUSTAINED {diagnosedDate, reportedBy}]->(Injury)
  (Injury)-[:HAS_STATUS_UPDATE]->(StatusUpdate {updateId, status, notes,
                                                recordedBy, recordedAt})
  (Coach)-[:MANAGES]->(Team)<-[:PLAYS_FOR]-(Player)

Every function takes an open neo4j session (the caller owns its lifetime)
and an identity repository used to attach real names to pseudonymous ids.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from neo4j.exceptions import ConstraintError

from services.access import ADMIN, COACH, PLAYER, role_of
from services.errors import BadRequestError, ForbiddenError, NotFoundError
from services.graph import graph_operation, to_plain
from services.identities import display_name

logger = logging.getLogger(__name__)

SEVERITIES = ("Minor", "Moderate", "Severe", "Critical")
STATUSES = ("Active", "Recovering", "Recovered", "Chronic", "Re-injured")
RESOLVED_STATUS = "Recovered"
SIDES = ("Left", "Right", "Both")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100
MAX_ID_ATTEMPTS = 5

# Severity sorts by clinical rank, not by name
_SEVERITY_RANK = (
    "CASE i.severity "
    + " ".join(f"WHEN '{name}' THEN {rank}" for rank, name in enumerate(SEVERITIES, 1))
    + " END"
)

# sortBy value -> Cypher sort expression; both sides are fixed strings
SORT_FIELDS = {
    "injuryDate": "i.injuryDate",
    "createdAt": "i.createdAt",
    "updatedAt": "i.updatedAt",
    "severity": _SEVERITY_RANK,
    "status": "i.status",
    "injuryType": "i.injuryType",
    "bodyPart": "i.bodyPart",
}
SORT_ORDERS = {"asc": "ASC", "desc": "DESC"}

INJURY_FIELDS = (
    "injuryId", "injuryType", "bodyPart", "side", "severity", "status",
    "injuryDate", "expectedReturnDate", "actualReturnDate", "mechanism",
    "diagnosis", "treatmentPlan", "notes", "resolutionNotes",
    "medicalClearance", "createdAt", "updatedAt",
)


# -------------------------------------------------------------------
# Input parsing
# -------------------------------------------------------------------

def _parse_datetime(value, field_name: str) -> datetime:
    text = str(value).strip()
    try:
        if len(text) == 10:
            parsed = datetime.combine(date.fromisoformat(text), time.min)
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise BadRequestError(f"{field_name} must be an ISO 8601 date")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(value, field_name: str) -> date:
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise BadRequestError(f"{field_name} must be an ISO 8601 date")


def _optional_text(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise BadRequestError(f"{key} must be a string")
    return value.strip() or None


def _required_text(payload: Dict[str, Any], key: str) -> str:
    value = _optional_text(payload, key)
    if not value:
        raise BadRequestError(f"{key} is required")
    return value


@dataclass
class NewInjury:
    player_id: str
    injury_type: str
    body_part: str
    severity: str
    injury_date: datetime
    side: Optional[str] = None
    expected_return_date: Optional[date] = None
    mechanism: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "NewInjury":
        severity = _required_text(payload, "severity")
        if severity not in SEVERITIES:
            raise BadRequestError(f"severity must be one of {', '.join(SEVERITIES)}")
        side = _optional_text(payload, "side")
        if side is not None and side not in SIDES:
            raise BadRequestError(f"side must be one of {', '.join(SIDES)}")
        if not payload.get("injuryDate"):
            raise BadRequestError("injuryDate is required")
        expected = payload.get("expectedReturnDate")

        return cls(
            player_id=_required_text(payload, "playerId"),
            injury_type=_required_text(payload, "injuryType"),
            body_part=_required_text(payload, "bodyPart"),
            severity=severity,
            injury_date=_parse_datetime(payload["injuryDate"], "injuryDate"),
            side=side,
            expected_return_date=_parse_date(expected, "expectedReturnDate") if expected else None,
            mechanism=_optional_text(payload, "mechanism"),
            diagnosis=_optional_text(payload, "diagnosis"),
            treatment_plan=_optional_text(payload, "treatmentPlan"),
            notes=_optional_text(payload, "notes"),
        )

    def properties(self) -> Dict[str, Any]:
        return {
            "injuryType": self.injury_type,
            "bodyPart": self.body_part,
            "side": self.side,
            "severity": self.severity,
            "injuryDate": self.injury_date,
            "expectedReturnDate": self.expected_return_date,
            "mechanism": self.mechanism,
            "diagnosis": self.diagnosis,
            "treatmentPlan": self.treatment_plan,
            "notes": self.notes,
        }


@dataclass
class InjuryUpdate:
    """
    Partial update. A field left as None was absent from the request and
    is not touched on the node.
    """
    status: Optional[str] = None
    status_note: Optional[str] = None
    expected_return_date: Optional[date] = None
    treatment_plan: Optional[str] = None
    notes: Optional[str] = None
    diagnosis: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InjuryUpdate":
        status = _optional_text(payload, "status")
        if status is not None and status not in STATUSES:
            raise BadRequestError(f"status must be one of {', '.join(STATUSES)}")
        expected = payload.get("expectedReturnDate")
        return cls(
            status=status,
            status_note=_optional_text(payload, "statusNote"),
            expected_return_date=_parse_date(expected, "expectedReturnDate") if expected else None,
            treatment_plan=_optional_text(payload, "treatmentPlan"),
            notes=_optional_text(payload, "notes"),
            diagnosis=_optional_text(payload, "diagnosis"),
        )

    def changes(self) -> Dict[str, Any]:
        """Injury properties to write, present fields only."""
        candidates = {
            "status": self.status,
            "expectedReturnDate": self.expected_return_date,
            "treatmentPlan": self.treatment_plan,
            "notes": self.notes,
            "diagnosis": self.diagnosis,
        }
        return {key: value for key, value in candidates.items() if value is not None}


@dataclass
class InjuryQuery:
    status: Optional[str] = None
    severity: Optional[str] = None
    body_part: Optional[str] = None
    player_id: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort_by: str = "injuryDate"
    sort_order: str = "desc"

    @classmethod
    def from_args(cls, args) -> "InjuryQuery":
        def _int(name: str, default: int) -> int:
            raw = args.get(name)
            if raw in (None, ""):
                return default
            try:
                return int(raw)
            except (TypeError, ValueError):
                raise BadRequestError(f"{name} must be an integer")

        page = _int("page", DEFAULT_PAGE)
        limit = _int("limit", DEFAULT_LIMIT)
        if page < 1:
            raise BadRequestError("page must be >= 1")
        if limit < 1 or limit > MAX_LIMIT:
            raise BadRequestError(f"limit must be between 1 and {MAX_LIMIT}")

        status = args.get("status") or None
        if status is not None and status not in STATUSES:
            raise BadRequestError(f"status must be one of {', '.join(STATUSES)}")
        severity = args.get("severity") or None
        if severity is not None and severity not in SEVERITIES:
            raise BadRequestError(f"severity must be one of {', '.join(SEVERITIES)}")

        sort_by = args.get("sortBy") or "injuryDate"
        if sort_by not in SORT_FIELDS:
            raise BadRequestError(f"sortBy must be one of {', '.join(SORT_FIELDS)}")
        sort_order = (args.get("sortOrder") or "desc").lower()
        if sort_order not in SORT_ORDERS:
            raise BadRequestError("sortOrder must be asc or desc")

        from_date = args.get("fromDate")
        to_date = args.get("toDate")
        to_parsed = None
        if to_date:
            to_parsed = _parse_datetime(to_date, "toDate")
            if len(str(to_date).strip()) == 10:
                # A bare date means "through the end of that day"
                to_parsed = to_parsed + timedelta(days=1)

        return cls(
            status=status,
            severity=severity,
            body_part=args.get("bodyPart") or None,
            player_id=args.get("playerId") or None,
            from_date=_parse_datetime(from_date, "fromDate") if from_date else None,
            to_date=to_parsed,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Resolution:
    return_to_play_date: date = field(default_factory=date.today)
    resolution_notes: Optional[str] = None
    medical_clearance: bool = False

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Resolution":
        raw_date = payload.get("returnToPlayDate")
        clearance = payload.get("medicalClearance", False)
        if not isinstance(clearance, bool):
            raise BadRequestError("medicalClearance must be a boolean")
        return cls(
            return_to_play_date=_parse_date(raw_date, "returnToPlayDate") if raw_date else date.today(),
            resolution_notes=_optional_text(payload, "resolutionNotes"),
            medical_clearance=clearance,
        )


# -------------------------------------------------------------------
# Pure helpers
# -------------------------------------------------------------------

def next_injury_id(last_id: Optional[str], year: int) -> str:
    """INJ-<year>-<seq>: one past the last id issued this year, from 001."""
    prefix = f"INJ-{year}-"
    if not last_id:
        return f"{prefix}001"
    try:
        last_number = int(last_id.rsplit("-", 1)[1])
    except (IndexError, ValueError):
        raise BadRequestError(f"Malformed injury id in graph: {last_id}")
    return f"{prefix}{last_number + 1:03d}"


def paginate(total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrevious": page > 1,
    }


def _new_update_id() -> str:
    return f"UPDATE-{uuid.uuid4().hex[:12].upper()}"


def injury_dto(injury: Dict[str, Any], link: Optional[Dict[str, Any]], names) -> Dict[str, Any]:
    injury = to_plain(injury) or {}
    dto = {key: injury.get(key) for key in INJURY_FIELDS}
    if link and link.get("pseudonymId"):
        player = {
            "playerId": link.get("playerId"),
            "pseudonymId": link["pseudonymId"],
            "diagnosedDate": to_plain(link.get("diagnosedDate")),
            "reportedBy": link.get("reportedBy"),
        }
        player.update(display_name(names, link["pseudonymId"]))
        dto["player"] = player
    else:
        dto["player"] = None
    return dto


def _link_from(record) -> Dict[str, Any]:
    return {
        "playerId": record["playerId"],
        "pseudonymId": record["pseudonymId"],
        "diagnosedDate": record["diagnosedDate"],
        "reportedBy": record["reportedBy"],
    }


# -------------------------------------------------------------------
# Queries
# -------------------------------------------------------------------

_PLAYER_EXISTS = """
MATCH (p:Player {pseudonymId: $playerId})
RETURN p.playerId AS playerId, p.pseudonymId AS pseudonymId
"""

_LAST_ID_FOR_YEAR = """
MATCH (i:Injury)
WHERE i.injuryId STARTS WITH $prefix
RETURN i.injuryId AS id
ORDER BY toInteger(split(id, '-')[2]) DESC
LIMIT 1
"""

# Creates only if the id is still free, so two writers racing for the same
# id cannot both succeed.
_CREATE_INJURY = """
MATCH (p:Player {pseudonymId: $playerId})
OPTIONAL MATCH (taken:Injury {injuryId: $injuryId})
WITH p, taken
WHERE taken IS NULL
CREATE (i:Injury $props)
SET i.injuryId = $injuryId,
    i.status = 'Active',
    i.createdAt = datetime(),
    i.updatedAt = datetime()
CREATE (p)-[r:SUSTAINED {diagnosedDate: datetime(), reportedBy: $reportedBy}]->(i)
RETURN properties(i) AS injury,
       p.playerId AS playerId,
       p.pseudonymId AS pseudonymId,
       r.diagnosedDate AS diagnosedDate,
       r.reportedBy AS reportedBy
"""

_FIND_INJURY = """
MATCH (i:Injury {injuryId: $injuryId})
OPTIONAL MATCH (p:Player)-[r:SUSTAINED]->(i)
OPTIONAL MATCH (i)-[:HAS_STATUS_UPDATE]->(s:StatusUpdate)
WITH i, p, r, s
ORDER BY s.recordedAt DESC
RETURN properties(i) AS injury,
       p.playerId AS playerId,
       p.pseudonymId AS pseudonymId,
       r.diagnosedDate AS diagnosedDate,
       r.reportedBy AS reportedBy,
       collect(s {.updateId, .status, .notes, .recordedBy, .recordedAt}) AS statusUpdates
"""

_UPDATE_INJURY = """
MATCH (i:Injury {injuryId: $injuryId})
SET i += $changes, i.updatedAt = datetime()
WITH i
FOREACH (ignored IN CASE WHEN $statusChanged THEN [1] ELSE [] END |
  CREATE (i)-[:HAS_STATUS_UPDATE]->(:StatusUpdate {
    updateId: $updateId,
    status: $status,
    notes: $statusNote,
    recordedBy: $updatedBy,
    recordedAt: datetime()
  })
)
RETURN i.injuryId AS injuryId
"""

_INJURY_STATUS = """
MATCH (i:Injury {injuryId: $injuryId})
RETURN i.status AS status
"""

_RESOLVE_INJURY = """
MATCH (i:Injury {injuryId: $injuryId})
WHERE i.status <> $resolved
SET i.status = $resolved,
    i.actualReturnDate = $returnToPlayDate,
    i.resolutionNotes = $resolutionNotes,
    i.medicalClearance = $medicalClearance,
    i.resolvedBy = $resolvedBy,
    i.resolvedAt = datetime(),
    i.updatedAt = datetime()
CREATE (i)-[:HAS_STATUS_UPDATE]->(:StatusUpdate {
  updateId: $updateId,
  status: $resolved,
  notes: $resolutionNotes,
  recordedBy: $resolvedBy,
  recordedAt: datetime()
})
RETURN i.injuryId AS injuryId
"""

# Role scoping is part of the MATCH itself; filters only narrow it further.
_SCOPES = {
    PLAYER: "MATCH (p:Player {pseudonymId: $callerId})-[r:SUSTAINED]->(i:Injury)",
    COACH: (
        "MATCH (c:Coach {pseudonymId: $callerId})-[:MANAGES]->(:Team)"
        "<-[:PLAYS_FOR]-(p:Player)-[r:SUSTAINED]->(i:Injury)"
    ),
    ADMIN: "MATCH (p:Player)-[r:SUSTAINED]->(i:Injury)",
}


def _scoped_match(user, query: InjuryQuery):
    role = role_of(user)
    if role not in _SCOPES:
        raise ForbiddenError("Unknown role")

    params: Dict[str, Any] = {"callerId": user.get("pseudonymId")}
    conditions: List[str] = []

    if query.status:
        conditions.append("i.status = $status")
        params["status"] = query.status
    if query.severity:
        conditions.append("i.severity = $severity")
        params["severity"] = query.severity
    if query.body_part:
        conditions.append("i.bodyPart = $bodyPart")
        params["bodyPart"] = query.body_part
    if query.player_id and role in (COACH, ADMIN):
        conditions.append("p.pseudonymId = $playerId")
        params["playerId"] = query.player_id
    if query.from_date:
        conditions.append("i.injuryDate >= $fromDate")
        params["fromDate"] = query.from_date
    if query.to_date:
        conditions.append("i.injuryDate < $toDate")
        params["toDate"] = query.to_date

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return f"{_SCOPES[role]}\n{where}", params


# -------------------------------------------------------------------
# Operations
# -------------------------------------------------------------------

@graph_operation("create injury")
def create_injury(session, identities, new_injury: NewInjury, reported_by: str) -> Dict[str, Any]:
    if session.run(_PLAYER_EXISTS, playerId=new_injury.player_id).single() is None:
        raise NotFoundError(f"Player {new_injury.player_id} not found")

    year = datetime.now(timezone.utc).year
    prefix = f"INJ-{year}-"
    record = None
    injury_id = None

    for attempt in range(1, MAX_ID_ATTEMPTS + 1):
        last = session.run(_LAST_ID_FOR_YEAR, prefix=prefix).single()
        injury_id = next_injury_id(last["id"] if last else None, year)
        try:
            record = session.run(
                _CREATE_INJURY,
                playerId=new_injury.player_id,
                injuryId=injury_id,
                props=new_injury.properties(),
                reportedBy=reported_by,
            ).single()
        except ConstraintError:
            record = None
        if record is not None:
            break
        logger.warning("injury id %s already taken (attempt %d), retrying", injury_id, attempt)

    if record is None:
        raise BadRequestError("Failed to create injury: could not allocate a unique injury id")

    names = identities.resolve_names([new_injury.player_id])
    logger.info("injury %s reported for %s by %s", injury_id, new_injury.player_id, reported_by)
    dto = injury_dto(record["injury"], _link_from(record), names)
    dto["statusUpdates"] = []
    return dto


@graph_operation("retrieve injury")
def find_injury(session, identities, injury_id: str) -> Dict[str, Any]:
    record = session.run(_FIND_INJURY, injuryId=injury_id).single()
    if record is None:
        raise NotFoundError(f"Injury {injury_id} not found")

    link = _link_from(record)
    names = identities.resolve_names([link["pseudonymId"]]) if link["pseudonymId"] else {}
    dto = injury_dto(record["injury"], link, names)
    dto["statusUpdates"] = [
        to_plain(update)
        for update in record["statusUpdates"]
        if update and update.get("updateId") is not None
    ]
    return dto


@graph_operation("update injury")
def update_injury(session, identities, injury_id: str, changes: InjuryUpdate,
                  updated_by: str) -> Dict[str, Any]:
    record = session.run(
        _UPDATE_INJURY,
        injuryId=injury_id,
        changes=changes.changes(),
        statusChanged=changes.status is not None,
        updateId=_new_update_id(),
        status=changes.status,
        statusNote=changes.status_note,
        updatedBy=updated_by,
    ).single()
    if record is None:
        raise NotFoundError(f"Injury {injury_id} not found")

    return find_injury(session, identities, injury_id)


@graph_operation("list injuries")
def list_injuries(session, identities, user, query: InjuryQuery) -> Dict[str, Any]:
    match, params = _scoped_match(user, query)

    # Count and page are separate reads; total may drift under concurrent writes
    count_record = session.run(f"{match}\nRETURN count(DISTINCT i) AS total", **params).single()
    total = count_record["total"] if count_record else 0

    sort_expression = SORT_FIELDS[query.sort_by]
    direction = SORT_ORDERS[query.sort_order]
    page_query = (
        f"{match}\n"
        "WITH DISTINCT i, p, r\n"
        f"ORDER BY {sort_expression} {direction}, i.injuryId {direction}\n"
        "SKIP $skip LIMIT $limit\n"
        "RETURN properties(i) AS injury, p.playerId AS playerId, p.pseudonymId AS pseudonymId,\n"
        "       r.diagnosedDate AS diagnosedDate, r.reportedBy AS reportedBy"
    )
    records = list(session.run(page_query, skip=query.skip, limit=query.limit, **params))

    names = identities.resolve_names(record["pseudonymId"] for record in records)
    data = [injury_dto(record["injury"], _link_from(record), names) for record in records]

    return {"data": data, "pagination": paginate(total, query.page, query.limit)}


@graph_operation("resolve injury")
def resolve_injury(session, identities, injury_id: str, resolution: Resolution,
                   resolved_by: str) -> Dict[str, Any]:
    current = session.run(_INJURY_STATUS, injuryId=injury_id).single()
    if current is None:
        raise NotFoundError(f"Injury {injury_id} not found")
    if current["status"] == RESOLVED_STATUS:
        raise BadRequestError(f"Injury {injury_id} is already resolved")

    record = session.run(
        _RESOLVE_INJURY,
        injuryId=injury_id,
        resolved=RESOLVED_STATUS,
        returnToPlayDate=resolution.return_to_play_date,
        resolutionNotes=resolution.resolution_notes,
        medicalClearance=resolution.medical_clearance,
        resolvedBy=resolved_by,
        updateId=_new_update_id(),
    ).single()
    if record is None:
        # Someone else resolved it between the read and the guarded write
        raise BadRequestError(f"Injury {injury_id} is already resolved")

    logger.info("injury %s resolved by %s", injury_id, resolved_by)
    return find_injury(session, identities, injury_id)
