from evmpay.api import create_app
from evmpay.audit import configure_logging
from evmpay.config import load_config
from evmpay.gateway import PaymentGateway


def main() -> None:
    cfg = load_config()
    configure_logging(cfg.log_level, cfg.audit_log_path)

    gateway = PaymentGateway.from_config(cfg)
    gateway.poll_payments()
    print({
        "gateway": cfg.name,
        "treasury": cfg.treasury_address,
        "transaction_type": cfg.transaction_type,
        "store": "sql" if cfg.database_url else "memory",
        "port": cfg.port,
    })
    app = create_app(gateway)
    try:
        app.run(host="0.0.0.0", port=cfg.port)
    finally:
        gateway.stop(timeout=5)


if __name__ == "__main__":
    main()
