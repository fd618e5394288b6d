"""Speech capture, synthesis and the conversation state machine."""
