"""Provider-backed agents: summaries, motivation extraction and pacing judgement."""
