"""
Voice command automation for Lara

This package turns spoken commands into actions:

- Wake word detection: continuous Wyoming STT windows matched against "Hey Lara" variants
- Command capture: fixed-length recording from the shared arecord stream
- Transcription: Wyoming (faster-whisper) or an OpenAI-compatible Whisper endpoint
- Intent classification: Cohere/OpenAI chat call with a deterministic rule fallback
- Action routing: tasks, reminders, navigation and Spotify playback via the Lara API
- Media redirects: native app URI first, web player second, server auto-play last
- Speech output: Piper TTS over Wyoming
- Telemetry and text commands over MQTT

Key modules:
- config: Configuration management from environment variables
- wake_detector: Wake word session state machine
- classifier / fallback_rules: Intent classification
- action_router: Intent dispatch
- redirect: App/web/auto-play redirect engine
- orchestrator: The end-to-end voice command pipeline
- daemon: Process entry point
"""
