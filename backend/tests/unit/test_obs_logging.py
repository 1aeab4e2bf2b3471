import json
import logging

from smartmatch.obs import logging as obs_logging


def _record(msg: str, **extra) -> logging.LogRecord:
	record = logging.LogRecord("smartmatch.test", logging.INFO, __file__, 1, msg, None, None)
	for key, value in extra.items():
		setattr(record, key, value)
	return record


def test_formatter_includes_bound_request_id():
	tokens = obs_logging.bind_context(request_id="req-9", user_id="u1")
	try:
		payload = json.loads(obs_logging.JSONLogFormatter().format(_record("match_request", returned=3)))
	finally:
		obs_logging.reset_context(tokens)
	assert payload["msg"] == "match_request"
	assert payload["request_id"] == "req-9"
	assert payload["user_id"] == "u1"
	assert payload["returned"] == 3
	assert obs_logging.current_request_id() is None


def test_formatter_redacts_sensitive_fields():
	payload = json.loads(
		obs_logging.JSONLogFormatter().format(_record("debug", access_token="abc", user_embedding=[0.1, 0.2]))
	)
	assert payload["access_token"] == "[redacted]"
	assert payload["user_embedding"] == "[redacted]"


def test_formatter_summarises_id_lists_and_binds_match_context():
	tokens = obs_logging.bind_context(match_context="zone", route=None)
	try:
		payload = json.loads(
			obs_logging.JSONLogFormatter().format(_record("match_request", candidate_ids=[f"u{i}" for i in range(40)]))
		)
	finally:
		obs_logging.reset_context(tokens)
	assert payload["candidate_ids"] == {"count": 40}
	assert payload["match_context"] == "zone"
	assert "route" not in payload


def test_long_collections_are_truncated():
	payload = json.loads(obs_logging.JSONLogFormatter().format(_record("debug", scores=list(range(25)))))
	assert len(payload["scores"]) == 11
	assert payload["scores"][-1] == "…"
