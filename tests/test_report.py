import json
import logging

import pytest
import requests

from coretypes import ParseResult, ReportPayload
from utils.logging import NoFilamentError, ReportError
from utils.report import build_payload, output_filename, payload_to_json, post_payload

LOGGER = logging.getLogger('post_job_test')


def sample_result() -> ParseResult:
    return ParseResult(
        filament_used_grams=[9.57, 1.23],
        printer_model='XL5',
        extruder_colours=['#FF0000', '#00FF00'],
    )


@pytest.mark.parametrize('output_path, expected', [
    ('/home/maker/prints/benchy_0.4n_0.2mm_PLA_MK4S_41m.gcode', 'benchy_0.4n_0.2mm_PLA_MK4S_41m.gcode'),
    ('benchy.bgcode', 'benchy.bgcode'),
    ('', ''),
    (None, ''),
])
def test_output_filename(output_path, expected):
    assert output_filename(output_path) == expected


def test_build_payload_passes_fields_through():
    payload = build_payload(sample_result(), '/tmp/out/benchy.gcode')

    assert payload == ReportPayload(
        filename='benchy.gcode',
        filament_used=(9.57, 1.23),
        printer_model='XL5',
        extruder_colour=('#FF0000', '#00FF00'),
    )


def test_build_payload_allows_missing_model_and_colours():
    payload = build_payload(ParseResult(filament_used_grams=[3.5]), None)

    assert payload.to_wire() == {
        'filename': '',
        'filament_used': [3.5],
        'printer_model': '',
        'extruder_colour': [],
    }


def test_build_payload_requires_filament():
    with pytest.raises(NoFilamentError):
        build_payload(ParseResult(printer_model='MK4S'), 'benchy.gcode')


def test_payload_json_round_trip():
    payload = build_payload(sample_result(), 'benchy.gcode')
    decoded = json.loads(payload_to_json(payload))

    assert set(decoded.keys()) == {'filename', 'filament_used', 'printer_model', 'extruder_colour'}
    assert decoded['filament_used'] == [9.57, 1.23]
    assert decoded['printer_model'] == 'XL5'
    assert decoded['extruder_colour'] == ['#FF0000', '#00FF00']


def test_post_failure_raises_report_error(monkeypatch):
    def refuse(*args, **kwargs):
        raise requests.exceptions.ConnectionError("Connection refused")

    monkeypatch.setattr(requests, 'post', refuse)
    payload = build_payload(sample_result(), 'benchy.gcode')

    with pytest.raises(ReportError, match='Connection refused'):
        post_payload(payload, 'http://localhost:9/api/pending', LOGGER)


def test_post_sends_json_with_timeout(monkeypatch):
    sent = {}

    class FakeResponse:
        status_code = 202
        reason = 'Accepted'

        def close(self):
            pass

    def fake_post(url, **kwargs):
        sent['url'] = url
        sent.update(kwargs)
        return FakeResponse()

    monkeypatch.setattr(requests, 'post', fake_post)
    payload = build_payload(sample_result(), 'benchy.gcode')

    status = post_payload(payload, 'http://tracker/api/pending', LOGGER, timeout=3)

    assert status == '202 Accepted'
    assert sent['url'] == 'http://tracker/api/pending'
    assert sent['timeout'] == 3
    assert sent['json'] == payload.to_wire()


def test_rejected_timeout_raises_report_error():
    payload = build_payload(sample_result(), 'benchy.gcode')

    # requests refuses a zero timeout before it tries to connect
    with pytest.raises(ReportError):
        post_payload(payload, 'http://localhost:9/api/pending', LOGGER, timeout=0)
