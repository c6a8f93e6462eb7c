"""vmidentity: tracks which contact represents the voicemail service."""
