from unittest.mock import MagicMock, patch

import pytest

from calendar_assistant import gcal
from calendar_assistant.agents.calendar.tools import build_calendar_tools
from calendar_assistant.errors import CalendarNotConnected

TZ = "Europe/Athens"


@pytest.fixture
def tools():
  return build_calendar_tools(TZ)


@pytest.mark.asyncio
async def test_create_event_builds_calendar_body(tools):
  created = {
      "id": "evt-1",
      "summary": "Dentist",
      "htmlLink": "https://calendar.google.com/event?eid=1",
      "start": {"dateTime": "2026-10-18T15:00:00+03:00"},
      "end": {"dateTime": "2026-10-18T16:00:00+03:00"},
      "attendees": [{"email": "ana@example.com"}],
  }
  create = MagicMock(return_value=created)
  create_tool = tools["createEvent"]
  params = create_tool.parse_input({
      "summary": "Dentist",
      "startDateTime": "2026-10-18T15:00:00+03:00",
      "endDateTime": "2026-10-18T16:00:00+03:00",
      "reminders": [{"method": "popup", "minutes": 10}],
      "guests": [{"email": "ana@example.com", "displayName": "Ana"}],
  })

  with patch.object(gcal, "create_event", create):
    result = await create_tool.execute(params)

  body = create.call_args.args[0]
  assert body["start"] == {"dateTime": "2026-10-18T15:00:00+03:00", "timeZone": TZ}
  assert body["reminders"] == {"useDefault": False,
                               "overrides": [{"method": "popup", "minutes": 10}]}
  assert body["attendees"] == [{"email": "ana@example.com", "displayName": "Ana"}]
  assert "location" not in body
  assert result["id"] == "evt-1"
  assert result["guests"] == ["ana@example.com"]


@pytest.mark.asyncio
async def test_update_event_sends_only_changed_fields(tools):
  update = MagicMock(return_value={"id": "evt-1", "summary": "Dentist"})
  update_tool = tools["updateEvent"]
  params = update_tool.parse_input({"eventId": "evt-1", "location": "Main St 4"})

  with patch.object(gcal, "update_event", update):
    result = await update_tool.execute(params)

  update.assert_called_once_with("evt-1", {"location": "Main St 4"})
  assert result["updated"] is True


@pytest.mark.asyncio
async def test_list_events_normalizes_records(tools):
  raw = [{"id": "a", "summary": "Holiday", "start": {"date": "2026-10-18"},
          "end": {"date": "2026-10-19"}}]

  with patch.object(gcal, "list_events", MagicMock(return_value=raw)):
    result = await tools["listEvents"].execute(tools["listEvents"].parse_input({}))

  assert result == [{"id": "a", "summary": "Holiday", "start": "2026-10-18",
                     "end": "2026-10-19", "location": None, "description": None}]


@pytest.mark.asyncio
async def test_delete_event_reports_deleted_id(tools):
  with patch.object(gcal, "delete_event", MagicMock(return_value={"success": True})):
    result = await tools["deleteEvent"].execute(
        tools["deleteEvent"].parse_input({"eventId": "evt-9"}))

  assert result == {"deleted": True, "eventId": "evt-9"}


def test_conflict_warning_schema_uses_wire_names(tools):
  schema = tools["conflictWarning"].openai_schema()

  assert schema["function"]["name"] == "conflictWarning"
  properties = schema["function"]["parameters"]["properties"]
  assert set(properties) == {"summary", "conflictingEvents"}


def test_missing_token_means_not_connected(tmp_path):
  with patch.object(gcal, "GOOGLE_TOKEN_FILE", tmp_path / "token.json"):
    assert gcal.is_authenticated() is False
    with pytest.raises(CalendarNotConnected):
      gcal.get_gcal_service()

    (tmp_path / "token.json").write_text('{"token": "x", "refresh_token": "y"}')
    assert gcal.is_authenticated() is True
