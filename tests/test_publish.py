"""Tests for payload building and the JSON file publisher."""

import json
from unittest.mock import MagicMock

import pytest

from relpub.errors import CollaboratorError, PublishError
from relpub.publish import (
    JsonFilePublisher,
    ListingLookup,
    StoreListing,
    build_payload,
    missing_mandatory_fields,
    publish_release,
)


class TestBuildPayload:
    def test_merges_answers_onto_release_data(self, make_context, valid_answers):
        answers = dict(valid_answers, app_type="games", categories="arcade, puzzle", price_value="9900")
        payload = build_payload(make_context(answers))

        assert payload.package_name == "com.example.snake"
        assert payload.app_type == "GAMES"
        assert payload.categories == ["arcade", "puzzle"]
        assert payload.price_value == 9900
        assert payload.version == "v1.2.0"
        assert payload.asset_name == "snake-release.aab"
        assert payload.asset_type == "AAB"
        assert payload.key_changes == ["New: Add bonus levels", "Fixed: Crash on pause"]

    def test_collected_whats_new_wins_over_suggestion(self, make_context, valid_answers):
        payload = build_payload(make_context(dict(valid_answers, whats_new="Hand written notes")))
        assert payload.whats_new == "Hand written notes"

    def test_whats_new_defaults_to_first_suggestion(self, make_context, valid_answers):
        payload = build_payload(make_context(dict(valid_answers, whats_new="")))
        assert payload.whats_new == "New bonus levels and a pause crash fix"

    def test_unparsable_price_is_ignored(self, make_context, valid_answers):
        payload = build_payload(make_context(dict(valid_answers, price_value="free")))
        assert payload.price_value is None

    def test_missing_mandatory_fields_raise(self, make_context, valid_answers):
        answers = dict(valid_answers)
        del answers["age_legal"]
        with pytest.raises(PublishError) as exc_info:
            build_payload(make_context(answers))
        assert exc_info.value.step == "build_payload"
        assert "age_legal" in str(exc_info.value)

    def test_missing_mandatory_fields_helper(self, valid_answers):
        assert missing_mandatory_fields(valid_answers) == []
        assert missing_mandatory_fields({"app_name": "Snake"}) == [
            "package_name",
            "app_type",
            "categories",
            "age_legal",
        ]


class TestPublishRelease:
    def test_hands_payload_to_publisher(self, make_context, valid_answers):
        publisher = MagicMock()
        payload = publish_release(make_context(valid_answers), publisher)
        publisher.publish.assert_called_once_with(payload)

    def test_publisher_errors_propagate_unchanged(self, make_context, valid_answers):
        publisher = MagicMock()
        publisher.publish.side_effect = ConnectionError("store offline")
        with pytest.raises(ConnectionError, match="store offline"):
            publish_release(make_context(valid_answers), publisher)


class TestJsonFilePublisher:
    def test_writes_payload_file(self, tmp_path, make_context, valid_answers):
        publisher = JsonFilePublisher(tmp_path)
        payload = build_payload(make_context(valid_answers))

        publisher.publish(payload)

        path = tmp_path / "com.example.snake" / "v1.2.0.json"
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["payload"]["app_name"] == "Snake"
        assert "published_at" in document["metadata"]

    def test_unversioned_payload_path(self, tmp_path, make_context, valid_answers):
        payload = build_payload(make_context(valid_answers, with_data=False))
        assert JsonFilePublisher(tmp_path).path_for(payload) == tmp_path / "com.example.snake" / "unversioned.json"

    def test_write_failure_becomes_publish_error(self, tmp_path, make_context, valid_answers):
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory", encoding="utf-8")
        publisher = JsonFilePublisher(blocker)

        with pytest.raises(PublishError) as exc_info:
            publisher.publish(build_payload(make_context(valid_answers)))
        assert exc_info.value.step == "store_publish"

    def test_lookup_returns_listing_of_published_app(self, tmp_path, make_context, valid_answers):
        publisher = JsonFilePublisher(tmp_path)
        publisher.publish(build_payload(make_context(valid_answers)))

        listing = publisher.lookup("com.example.snake")

        assert isinstance(publisher, ListingLookup)
        assert listing == StoreListing(
            package_name="com.example.snake",
            app_name="Snake",
            app_type="GAMES",
            categories=["arcade", "puzzle"],
            age_legal="6+",
        )

    def test_lookup_unknown_package(self, tmp_path):
        assert JsonFilePublisher(tmp_path).lookup("com.example.unknown") is None

    def test_lookup_of_corrupt_payload_is_a_collaborator_error(self, tmp_path):
        package_dir = tmp_path / "com.example.snake"
        package_dir.mkdir()
        (package_dir / "v1.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(CollaboratorError, match="Unreadable store listing"):
            JsonFilePublisher(tmp_path).lookup("com.example.snake")
