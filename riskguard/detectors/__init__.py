"""Detectors for sensitive words, spam, harassment and semantic patterns, plus AI and chat-model detectors."""