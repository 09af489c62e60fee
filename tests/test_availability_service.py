"""Tests for availability aggregation, ranking and response collection.

Covers:
- Per-date tallies, scores and the no-response remainder
- Ranking with stable tie order
- Request invariants and response upserts
- Results endpoint against current group membership
- Member notification when a request is created
- Listing and deleting a group's requests
"""
from datetime import date

import pytest

from callboard.errors import NotFoundError, ValidationError
from callboard.models.availability import AvailabilityResponse, RequestStatus
from callboard.models.event import Event
from callboard.schemas.availability import AggregatedDateResult, MemberResponse
from callboard.services import availability_service
from callboard.services.availability_service import aggregate, rank_dates, score
from tests.conftest import add_member, make_event, make_group, make_user, utc

DATES = ["2026-03-06", "2026-03-07", "2026-03-08"]


def _result(day: str, s: int) -> AggregatedDateResult:
    return AggregatedDateResult(
        date=day, available=0, maybe=0, not_available=0, no_response=0, total=0, score=s,
    )


class TestScore:
    def test_weights(self):
        assert score(0, 0) == 0
        assert score(3, 1) == 7
        assert score(1, 0) == 2
        assert score(0, 2) == 2

    def test_available_always_outweighs_maybe(self):
        for a in range(5):
            for m in range(5):
                assert score(a + 1, m) > score(a, m)
                assert score(a, m + 1) > score(a, m)
                assert score(a + 1, m) == score(a, m + 2)


class TestAggregate:
    """Pure aggregation over already-loaded responses."""

    def test_counts_and_score(self):
        responses = [
            MemberResponse(user_name="Ana", responses={"2026-03-06": "available"}),
            MemberResponse(user_name="Ben", responses={"2026-03-06": "available"}),
            MemberResponse(user_name="Cy", responses={"2026-03-06": "available"}),
            MemberResponse(user_name="Di", responses={"2026-03-06": "maybe"}),
            MemberResponse(user_name="Ed", responses={"2026-03-06": "not_available"}),
            MemberResponse(user_name="Flo", responses={"2026-03-06": "not_available"}),
        ]
        [result] = aggregate(["2026-03-06"], responses, total_members=8)
        assert (result.available, result.maybe, result.not_available) == (3, 1, 2)
        assert result.no_response == 2
        assert result.total == 8
        assert result.score == 7

    def test_one_result_per_date_in_input_order(self):
        results = aggregate(list(reversed(DATES)), [], total_members=4)
        assert [r.date for r in results] == list(reversed(DATES))
        assert all(r.no_response == 4 and r.score == 0 for r in results)

    def test_missing_date_counts_as_no_response(self):
        responses = [MemberResponse(user_name="Ana", responses={"2026-03-06": "maybe"})]
        first, second, _ = aggregate(DATES, responses, total_members=3)
        assert first.maybe == 1 and first.no_response == 2
        assert second.maybe == 0 and second.no_response == 3

    def test_counts_always_sum_to_total(self):
        responses = [
            MemberResponse(user_name="Ana", responses={"2026-03-06": "available", "2026-03-07": "maybe"}),
            MemberResponse(user_name="Ben", responses={"2026-03-07": "not_available", "2026-03-08": "available"}),
            MemberResponse(user_name="Cy", responses={"2026-03-06": "maybe", "2026-03-08": "available"}),
        ]
        for result in aggregate(DATES, responses, total_members=5):
            assert result.available + result.maybe + result.not_available + result.no_response == result.total
            assert result.score == 2 * result.available + result.maybe

    def test_no_response_is_not_clamped(self):
        """More answers than members means stale membership; the deficit stays visible."""
        responses = [MemberResponse(user_name=n, responses={"2026-03-06": "available"}) for n in "ABC"]
        [result] = aggregate(["2026-03-06"], responses, total_members=2)
        assert result.no_response == -1

    def test_unknown_status_is_ignored(self):
        responses = [
            MemberResponse(user_name="Ana", responses={"2026-03-06": "perhaps"}),
            MemberResponse(user_name="Ben", responses={"2026-03-06": ""}),
        ]
        [result] = aggregate(["2026-03-06"], responses, total_members=2)
        assert result.available == result.maybe == result.not_available == 0
        assert result.no_response == 2
        assert result.respondents == []

    def test_respondents_keep_response_order(self):
        responses = [
            MemberResponse(user_name="Zed", responses={"2026-03-06": "maybe"}),
            MemberResponse(user_name="Amy", responses={"2026-03-06": "available"}),
        ]
        [result] = aggregate(["2026-03-06"], responses, total_members=2)
        assert [(r.name, r.status) for r in result.respondents] == [("Zed", "maybe"), ("Amy", "available")]

    def test_does_not_mutate_inputs(self):
        responses = [MemberResponse(user_name="Ana", responses={"2026-03-06": "available"})]
        dates = ["2026-03-06"]
        aggregate(dates, responses, total_members=1)
        assert dates == ["2026-03-06"]
        assert responses[0].responses == {"2026-03-06": "available"}


class TestRankDates:
    def test_orders_by_score_descending(self):
        ranked = rank_dates([_result("a", 1), _result("b", 5), _result("c", 3)])
        assert [r.date for r in ranked] == ["b", "c", "a"]

    def test_ties_keep_input_order(self):
        ranked = rank_dates([_result("a", 4), _result("b", 6), _result("c", 4), _result("d", 4)])
        assert [r.date for r in ranked] == ["b", "a", "c", "d"]

    def test_limit(self):
        ranked = rank_dates([_result("a", 1), _result("b", 2), _result("c", 3)], limit=2)
        assert [r.date for r in ranked] == ["c", "b"]


# ---------------------------------------------------------------------------
# Store-backed operations
# ---------------------------------------------------------------------------


def _setup(db, members: int = 2):
    creator = make_user(db, name="Director")
    group = make_group(db, creator, name="The Players")
    others = []
    for i in range(members):
        user = make_user(db, name=f"Member {i}")
        add_member(db, group, user)
        others.append(user)
    request = availability_service.create_availability_request(
        db,
        group_id=group.group_id,
        title="  Spring show dates ",
        date_range_start=date(2026, 3, 1),
        date_range_end=date(2026, 3, 31),
        requested_dates=DATES,
        created_by_id=creator.user_id,
        requested_start_time="19:00",
        requested_end_time="21:00",
    )
    return creator, group, others, request


class TestCreateRequest:
    def test_creates_open_request(self, db):
        _, _, _, request = _setup(db)
        assert request.status == RequestStatus.open
        assert request.title == "Spring show dates"
        assert request.requested_dates == DATES

    @pytest.mark.parametrize("kwargs, message", [
        ({"date_range_end": date(2026, 2, 1)}, "precede"),
        ({"requested_dates": []}, "At least one"),
        ({"requested_dates": ["2026-04-02"]}, "outside"),
        ({"requested_dates": ["2026-03-06", "2026-03-06"]}, "unique"),
        ({"requested_start_time": "19:00"}, "together"),
        ({"requested_start_time": "7pm", "requested_end_time": "21:00"}, "Invalid time"),
        ({"requested_dates": ["03/06/2026"]}, "Invalid date"),
    ])
    def test_rejects_invalid_requests(self, db, kwargs, message):
        creator = make_user(db, name="Director")
        group = make_group(db, creator)
        params = dict(
            group_id=group.group_id, title="Dates", date_range_start=date(2026, 3, 1),
            date_range_end=date(2026, 3, 31), requested_dates=["2026-03-06"], created_by_id=creator.user_id,
        )
        params.update(kwargs)
        with pytest.raises(ValidationError, match=message):
            availability_service.create_availability_request(db, **params)

    def test_notifies_other_members(self, db, email_sender):
        creator = make_user(db, name="Director")
        group = make_group(db, creator)
        keen = make_user(db, name="Keen")
        quiet = make_user(db, name="Quiet")
        add_member(db, group, keen)
        add_member(db, group, quiet, preferences={"availability_requests": {"email": False}})

        availability_service.create_availability_request(
            db, group_id=group.group_id, title="Tour <dates>", date_range_start=date(2026, 3, 1),
            date_range_end=date(2026, 3, 28), requested_dates=["2026-03-06"],
            created_by_id=creator.user_id, sender=email_sender,
        )
        assert email_sender.recipients == [keen.email]
        message = email_sender.sent[0]
        assert "Mar 1 – Mar 28, 2026" in message["text"]
        assert "Tour &lt;dates&gt;" in message["html"]


class TestSubmitResponse:
    def test_upsert_keeps_one_row(self, db):
        _, _, (member, _), request = _setup(db)
        availability_service.submit_availability_response(
            db, request.request_id, member.user_id, {"2026-03-06": "maybe"},
        )
        availability_service.submit_availability_response(
            db, request.request_id, member.user_id, {"2026-03-06": "available", "2026-03-07": "not_available"},
        )
        rows = db.query(AvailabilityResponse).filter_by(request_id=request.request_id).all()
        assert len(rows) == 1
        assert availability_service.get_user_response(db, request.request_id, member.user_id) == {
            "2026-03-06": "available", "2026-03-07": "not_available",
        }

    def test_rejects_unrequested_date(self, db):
        _, _, (member, _), request = _setup(db)
        with pytest.raises(ValidationError, match="not requested"):
            availability_service.submit_availability_response(
                db, request.request_id, member.user_id, {"2026-03-20": "available"},
            )

    def test_rejects_invalid_status(self, db):
        _, _, (member, _), request = _setup(db)
        with pytest.raises(ValidationError, match="Invalid availability status"):
            availability_service.submit_availability_response(
                db, request.request_id, member.user_id, {"2026-03-06": "yes"},
            )

    def test_closed_request_rejects_responses(self, db):
        _, _, (member, _), request = _setup(db)
        availability_service.close_availability_request(db, request.request_id)
        with pytest.raises(ValidationError, match="closed"):
            availability_service.submit_availability_response(
                db, request.request_id, member.user_id, {"2026-03-06": "available"},
            )
        availability_service.reopen_availability_request(db, request.request_id)
        availability_service.submit_availability_response(
            db, request.request_id, member.user_id, {"2026-03-06": "available"},
        )

    def test_unknown_request(self, db):
        with pytest.raises(NotFoundError):
            availability_service.submit_availability_response(db, "missing", "user", {})

    def test_user_without_response(self, db):
        _, _, (member, _), request = _setup(db)
        assert availability_service.get_user_response(db, request.request_id, member.user_id) is None


class TestAggregatedResults:
    def test_counts_against_membership(self, db):
        creator, _, (first, second), request = _setup(db)
        availability_service.submit_availability_response(
            db, request.request_id, first.user_id, {"2026-03-06": "available", "2026-03-07": "maybe"},
        )
        availability_service.submit_availability_response(
            db, request.request_id, second.user_id, {"2026-03-06": "maybe", "2026-03-08": "not_available"},
        )
        results = availability_service.get_aggregated_results(db, request.request_id)

        assert results.total_members == 3  # creator plus two members
        assert results.total_responded == 2
        by_date = {r.date: r for r in results.dates}
        assert by_date["2026-03-06"].score == 3
        assert by_date["2026-03-06"].no_response == 1
        assert by_date["2026-03-08"].not_available == 1
        # Dates nobody can make are left out of the suggestions
        assert results.best_dates == ["2026-03-06", "2026-03-07"]

    def test_results_endpoint(self, client, db):
        _, _, (member, _), request = _setup(db)
        resp = client.put(
            f"/api/availability/{request.request_id}/responses/{member.user_id}",
            json={"responses": {"2026-03-07": "available"}},
        )
        assert resp.status_code == 200

        resp = client.get(f"/api/availability/{request.request_id}/results")
        assert resp.status_code == 200
        data = resp.json()
        assert [d["date"] for d in data["dates"]] == DATES
        assert data["best_dates"] == ["2026-03-07"]
        assert data["dates"][1]["respondents"] == [{"name": "Member 0", "status": "available"}]

    def test_invalid_status_rejected_by_api(self, client, db):
        _, _, (member, _), request = _setup(db)
        resp = client.put(
            f"/api/availability/{request.request_id}/responses/{member.user_id}",
            json={"responses": {"2026-03-07": "definitely"}},
        )
        assert resp.status_code == 422

    def test_close_and_reopen_endpoints(self, client, db):
        _, _, (member, _), request = _setup(db)
        assert client.post(f"/api/availability/{request.request_id}/close").json()["status"] == "closed"
        resp = client.put(
            f"/api/availability/{request.request_id}/responses/{member.user_id}",
            json={"responses": {"2026-03-07": "available"}},
        )
        assert resp.status_code == 422
        assert client.post(f"/api/availability/{request.request_id}/reopen").json()["status"] == "open"

    def test_unknown_request_is_404(self, client):
        assert client.get("/api/availability/nope/results").status_code == 404


class TestRequestListing:
    def test_open_requests_first_with_counts(self, db):
        creator, group, (member, _), first = _setup(db)
        availability_service.submit_availability_response(db, first.request_id, member.user_id, {DATES[0]: "maybe"})
        availability_service.close_availability_request(db, first.request_id)
        second = availability_service.create_availability_request(
            db, group_id=group.group_id, title="Summer", date_range_start=date(2026, 6, 1),
            date_range_end=date(2026, 6, 30), requested_dates=["2026-06-12"], created_by_id=creator.user_id,
        )

        listed = availability_service.list_group_availability_requests(db, group.group_id)
        assert [r.request_id for r in listed] == [second.request_id, first.request_id]
        closed = listed[1]
        assert closed.status == "closed"
        assert closed.response_count == 1
        assert closed.member_count == 3
        assert closed.created_by_name == "Director"
        assert listed[0].response_count == 0

    def test_other_groups_are_excluded(self, db):
        _setup(db)
        assert availability_service.list_group_availability_requests(db, "another-group") == []

    def test_list_endpoint(self, client, db):
        _, group, _, request = _setup(db)
        resp = client.get("/api/availability/", params={"group_id": group.group_id})
        assert resp.status_code == 200
        [row] = resp.json()
        assert row["request_id"] == request.request_id
        assert row["title"] == "Spring show dates"


class TestDeleteRequest:
    def test_delete_removes_responses_and_unlinks_events(self, db):
        creator, group, (member, _), request = _setup(db)
        availability_service.submit_availability_response(db, request.request_id, member.user_id, {DATES[0]: "available"})
        event = make_event(db, group, creator, utc(2026, 3, 6, 19, 0))
        event.created_from_request_id = request.request_id
        db.commit()

        availability_service.delete_availability_request(db, request.request_id)

        db.expire_all()
        assert db.query(AvailabilityResponse).count() == 0
        assert db.get(Event, event.event_id).created_from_request_id is None
        with pytest.raises(NotFoundError):
            availability_service.get_availability_request(db, request.request_id)

    def test_delete_endpoint(self, client, db):
        _, _, _, request = _setup(db)
        assert client.delete(f"/api/availability/{request.request_id}").status_code == 204
        assert client.delete(f"/api/availability/{request.request_id}").status_code == 404
