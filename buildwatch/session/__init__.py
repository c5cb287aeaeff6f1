"""
Live build session.

This package implements the client side of one build-monitoring interaction:
- SessionConnection: channel lifecycle + inbound dispatch
- BuildCorrelator: single build trigger, job id correlation
- JobStatusTracker / LogTranscript: status label and ordered transcript
- AnalysisRequester: single-flight analysis of the transcript
"""
