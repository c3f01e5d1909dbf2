"""In-memory stand-ins for the Neo4j driver and the identity repository."""


class FakeResult:
    def __init__(self, rows):
        self._rows = [dict(row) for row in rows]

    def single(self):
        return self._rows[0] if self._rows else None

    def consume(self):
        return None

    def __iter__(self):
        return iter(self._rows)


class FakeSession:
    """
    Scripted graph session.

    Responses are registered with on(marker, rows) where marker is either the
    exact query text or a substring of it. Each run() uses the first matching
    response; a response is consumed unless it is the last one left for its
    marker, so a single registration answers every call.
    """

    def __init__(self):
        self.calls = []
        self._responses = []
        self.closed = False

    def on(self, marker, rows=None, error=None):
        self._responses.append((marker, rows if rows is not None else [], error))
        return self

    def run(self, query, **params):
        self.calls.append((query, params))
        for index, (marker, rows, error) in enumerate(self._responses):
            if marker == query or marker in query:
                same_marker = [r for r in self._responses if r[0] == marker]
                if len(same_marker) > 1:
                    del self._responses[index]
                if error is not None:
                    raise error
                if callable(rows):
                    rows = rows(query, params)
                return FakeResult(rows)
        return FakeResult([])

    def queries_matching(self, marker):
        return [(q, p) for q, p in self.calls if marker == q or marker in q]

    def close(self):
        self.closed = True


class FakeDriver:
    def __init__(self, session):
        self._session = session

    def session(self, database=None):
        return self._session

    def close(self):
        pass


class FakeIdentities:
    def __init__(self, names=None):
        self.names = names or {}
        self.calls = []

    def resolve_names(self, pseudonym_ids, identity_type="player"):
        wanted = sorted({pid for pid in pseudonym_ids if pid})
        self.calls.append((wanted, identity_type))
        return {pid: self.names[pid] for pid in wanted if pid in self.names}
