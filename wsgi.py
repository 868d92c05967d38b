from app import create_app

app = create_app()


if __name__ == "__main__":
    cfg = app.config["CFG"]
    app.run(host="0.0.0.0", port=5000, debug=not cfg.is_production)
