from __future__ import annotations


def hint_for_exception(summary: str) -> str:
    s = str(summary or "").lower()
    if "no module named 'vosk'" in s or "no module named vosk" in s:
        return "Vosk is not installed. Install with: python -m pip install vosk"
    if "no module named" in s:
        return "A required package is missing in this virtualenv. Reinstall dependencies and retry."
    if "failed to unpack the model" in s or "failed to create a model" in s:
        return "Model could not be loaded. Check --source-model/--target-model paths or model names."
    if "config file not found" in s:
        return "Configured JSON file is missing. Update the config path or restore the file."
    if "microphone" in s or ("sounddevice" in s and "failed" in s):
        return "Microphone init failed. Check input device selection and app mic permissions."
    if "file too short" in s or "wav" in s:
        return "Replay audio could not be read. Use a 16-bit PCM WAV file."
    return "Check logs for full traceback."
