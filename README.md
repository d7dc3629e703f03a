# riskguard

riskguard is a content risk control service. It runs user text through a set of detectors and returns a verdict. The verdict carries a risk score, the risks that were found and a suggestion for the author.

The built-in detectors cover:

- sensitive words
- spam: links, phone numbers, money amounts and keywords
- harassment: keywords, repeated messages and messages aimed at one user
- semantic phrasing and conversation patterns

Optional detectors can call an external AI service, an OpenAI-compatible chat API or a local chat model. If a chat model cannot be reached, the detector falls back to keyword checks.

A JSON rule engine is consulted after the detectors. If it produces an explicit result, that result is used. Otherwise the highest risk score is compared with `content_check.risk_score_threshold`:

| Score | Result |
| --- | --- |
| at or above the threshold | reject |
| at or above 70% of the threshold | review |
| at or above 50% of the threshold | warning |
| below 50% of the threshold | pass |

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install ".[test]"
```

## Running the server

```
riskguard-server
riskguard-server --config path/to/config.yaml
```

The configuration is read from `config/config.yaml` unless `--config` names another file. The file is YAML and has these sections:

- `server`: `port` and `log_level`. `log_level` is one of `debug`, `info`, `warn` or `error`.
- `redis`: the connection used as a result cache. If Redis is unreachable the service runs without a cache.
- `content_check`:
  - `risk_score_threshold`
  - `cache_ttl`, in seconds
  - `batch_check_max_size`
  - `context_history_size`
  - `use_ml_model`
  - `sensitive_words_update_interval`, in seconds
- `ai_service`: `url`, `api_key` and `timeout` in milliseconds. Used when `use_ml_model` is true.
- `nlp_service`: `enabled`, `model_path`, `server_port`, `threshold`, `context_size`, `use_local_llm` and `local_llm_api`.
- `rule_engine`: `default_rules_path`, the path of the JSON rules file. The service does not start without this file.

Sensitive words are loaded from `config/sensitive_words.txt`, one word per line. Blank lines are skipped, as are lines starting with `#`. The list is reloaded every `sensitive_words_update_interval` seconds.

When `nlp_service.enabled` is true, the command also starts the local model server (`riskguard.model_server.ModelServer`) on `server_port`. This server offers `GET /health` and `POST /analyze`. The analysis is keyword based and covers:

- intent
- sentiment
- toxicity
- similarity

Logs are written to standard output as JSON lines. The server stops on SIGINT or SIGTERM.

## HTTP API

All endpoints are under `/api/v1`:

- `POST /check` checks one text.
  - Body: `{"content", "user_id", "scene", "extra_data"}`. `content` is required.
  - Results that are not rejections are cached by content for `cache_ttl` seconds.
- `POST /batch_check` checks several texts in parallel.
  - Body: `{"items": [...], "batch_id"}`.
  - At most `batch_check_max_size` items are checked.
  - If `batch_id` is missing, it is generated from the current time.
- `POST /check_with_context` checks a text against the earlier conversation.
  - Body: `{"content", "user_id", "scene", "context_items": [{"content", "user_id", "timestamp", "content_id"}], "extra_data"}`.
  - These results are never cached.
- `GET /health` returns `{"status": "ok", "service": "content-risk-control", "time": ...}`.

A check response has these fields:

- `success`
- `result`: 0 pass, 1 review, 2 reject, 3 warning.
- `risk_score`
- `risks`: each risk has `type`, `score`, `description` and `details`. Risk types run from 0 to 8: unknown, sensitive word, spam, harassment, hate speech, violence, adult, context violation, suspicious behaviour.
- `request_id`
- `suggestion`
- `cost_time`: in milliseconds.
- `extra`

Errors are reported as follows:

- A malformed request gets status 400 with `{"success": false, "error": "Invalid request: ..."}`.
- A failed check gets status 500.
- Every `OPTIONS` request gets status 204 with CORS headers.

## Using it as a library

```python
from riskguard.config import load
from riskguard.content_check import create_content_check_service

cfg = load("config/config.yaml")
with create_content_check_service(cfg, None) as service:
    result = service.check_content("hello", "user_001", "comment", {})
    print(result.result, result.risk_score, result.suggestion)
```

`ContentCheckService` offers these methods:

- `check_content`
- `check_content_with_context`
- `batch_check_content`
- `stream_check_content`: a generator that yields one result per incoming `CheckRequest`.

The detectors can be used on their own:

```python
from riskguard.model import CheckContext
from riskguard.detectors.spam import SpamDetector

risks = SpamDetector().detect(CheckContext(content="免费领取优惠券", user_id="u1", scene="post"))
```

`riskguard.http_api.create_app(service)` returns the Flask application, so it can be served by any WSGI server.

## What it does not do

- There is no gRPC interface. Streaming checks are only available through `ContentCheckService.stream_check_content`.
- There is no command-line client.
- The `database` section of the configuration is read but not used. Nothing is stored apart from the optional Redis cache.
- The local model server loads no real model. It only checks that `model_path` exists, and its analysis is keyword based.
- The built-in rules (`sensitive_words`, `spam_detection`, `context_analysis`, `user_reputation`) never match by themselves. With the shipped logic the verdict comes from the detector scores.