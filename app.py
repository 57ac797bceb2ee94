"""
ETF Replica - Web UI
====================
Flask app exposing the two backtests to the static page in ./public.

    python app.py
    → http://localhost:3001
"""

import os

from flask import Flask, jsonify, request, send_from_directory

from backtest import (InsufficientDataError, InvalidRequestError,
                      run_custom_backtest, run_etf_backtest)
from run_context import RunContext, configure_logging, get_logger
from schemas import ROOT, RunConfig, load_config
from tushare_client import ProviderClient

log = get_logger("app")


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def create_app(cfg: RunConfig | None = None, client: ProviderClient | None = None) -> Flask:
    cfg = cfg or load_config()
    client = client or ProviderClient(cfg.provider)
    static_dir = os.path.join(ROOT, cfg.server.static_dir)

    app = Flask(__name__, static_folder=static_dir, static_url_path="")
    app.config["REPLICA_CONFIG"] = cfg

    # ── Backtests ─────────────────────────────────────────────────────────────

    @app.route("/api/backtest", methods=["POST"])
    def api_backtest():
        body = _json_body()
        codes = body.get("stockCodes")
        if not codes or not isinstance(codes, list):
            return jsonify({"error": "Stock codes are required"}), 400
        ctx = RunContext(kind="custom")
        try:
            result = run_custom_backtest(client, cfg, codes, body.get("startDate"),
                                         body.get("endDate"), ctx=ctx)
        except (InvalidRequestError, InsufficientDataError) as e:
            return jsonify({"error": "Invalid backtest request", "message": str(e)}), 400
        except Exception as e:
            log.exception("Backtest error", extra={"run_id": ctx.run_id})
            return jsonify({"error": "Failed to perform backtest", "message": str(e)}), 500
        return jsonify({"success": True, "data": result.to_payload()})

    @app.route("/api/backtest-etf", methods=["POST"])
    def api_backtest_etf():
        body = _json_body()
        ctx = RunContext(kind="etf")
        try:
            result = run_etf_backtest(client, cfg, body.get("startDate"),
                                      body.get("endDate"), ctx=ctx)
        except InvalidRequestError as e:
            return jsonify({"error": "Invalid backtest request", "message": str(e)}), 400
        except InsufficientDataError as e:
            log.error(str(e), extra={"run_id": ctx.run_id})
            return jsonify({
                "error": "ETF portfolio data not available",
                "message": f"无法获取{cfg.fund.ts_code.split('.')[0]}的持仓数据，请检查日期或稍后重试",
            }), 404
        except Exception as e:
            log.exception("ETF backtest error", extra={"run_id": ctx.run_id})
            return jsonify({"error": "Failed to perform ETF backtest", "message": str(e)}), 500
        return jsonify({"success": True, "data": result.to_payload()})

    # ── Misc ──────────────────────────────────────────────────────────────────

    @app.route("/api/health")
    def api_health():
        return jsonify({"status": "ok", "hasToken": cfg.provider.has_token})

    @app.route("/")
    def index():
        return send_from_directory(static_dir, "index.html")

    return app


def main():
    cfg = load_config()
    configure_logging(cfg.logging.level, cfg.logging.log_dir)
    app = create_app(cfg)
    log.info(f"Server running on http://localhost:{cfg.server.port}")
    log.info(f"Tushare token configured: {cfg.provider.has_token}")
    app.run(host=cfg.server.host, port=cfg.server.port, threaded=True)


if __name__ == "__main__":
    main()
