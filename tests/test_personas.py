import random

import pytest

from pulsemap.events import EventEnvelope
from pulsemap.synthetic.personas import form_lost, rager, reader, skimmer


@pytest.mark.parametrize("persona", [reader, skimmer, rager, form_lost])
def test_personas_emit_valid_envelopes(persona):
    envelopes = persona(random.Random(1))
    kinds = {e["type"] for e in envelopes}
    assert {"pageView", "trafficSource", "interaction"} <= kinds
    for e in envelopes:
        EventEnvelope.model_validate(e).record()
    assert len({e["data"]["sessionId"] for e in envelopes}) == 1


def test_sources_match_the_story():
    def source(envs):
        return next(e["data"]["sourceType"] for e in envs if e["type"] == "trafficSource")
    rng = random.Random(2)
    assert source(reader(rng)) == "organic"
    assert source(skimmer(rng)) == "social"
    assert source(rager(rng)) == "direct"
    assert source(form_lost(rng)) == "email"
