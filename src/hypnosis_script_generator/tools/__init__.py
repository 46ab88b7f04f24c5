"""Pure text tools: parsing, composing, tracking and the conversation wire format."""
