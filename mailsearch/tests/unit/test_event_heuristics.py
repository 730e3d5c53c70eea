"""
Unit tests for the regex event extractor used without a model service.
"""
from mailsearch.core.ai.event_heuristics import extract_events_locally


class TestLocalEventExtraction:
    """Test date and time patterns"""

    def test_iso_date_with_time(self):
        events = extract_events_locally("Quarterly review", "We meet on 2025-01-14 10:30 in the big room.")
        assert len(events) == 1
        assert events[0].title == "Quarterly review"
        assert events[0].start_date == "2025-01-14 10:30"

    def test_dotted_date_with_pm(self):
        events = extract_events_locally("Dinner", "Date: 2025.03.07 (Fri) 7:00 pm")
        assert events[0].start_date == "2025-03-07 19:00"

    def test_korean_full_date(self):
        events = extract_events_locally("회의 일정 안내", "2025년 1월 14일 (화) 오후 2시 30분에 회의가 있습니다.")
        assert [e.start_date for e in events] == ["2025-01-14 14:30"]

    def test_korean_month_day_uses_message_year(self):
        events = extract_events_locally("워크숍", "3월 5일 오전 9시 시작", date_hint="2025-02-20T08:00:00")
        assert [e.start_date for e in events] == ["2025-03-05 09:00"]

    def test_month_day_without_year_hint_skipped(self):
        assert extract_events_locally("워크숍", "3월 5일 시작") == []

    def test_location_line(self):
        events = extract_events_locally("Offsite", "When: 2025/06/02\nLocation: Seoul HQ, 5F")
        assert events[0].location == "Seoul HQ, 5F"

    def test_duplicates_collapsed(self):
        events = extract_events_locally("Launch 2025-04-01", "Reminder: launch is 2025-04-01.")
        assert len(events) == 1

    def test_invalid_dates_ignored(self):
        assert extract_events_locally("Numbers", "Ticket 2025-13-45 and version 1.2.3") == []

    def test_missing_subject(self):
        events = extract_events_locally(None, "Due 2025-05-30")
        assert events[0].title == "(no subject)"
        assert events[0].description == "Due 2025-05-30"
