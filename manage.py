"""
Operator commands.

    python manage.py init-db
    python manage.py create-user EMAIL PASSWORD [--first-name X] [--last-name Y]
    python manage.py check-user EMAIL
    python manage.py check
"""
import argparse
import json
import sys

import auth
import config
import database
import health
import models


def cmd_init_db(args, db):
    database.init_db(db.get_bind())
    print(f"Tables ready on {database.describe_backend(db.get_bind())}")
    return 0


def cmd_create_user(args, db):
    email = args.email.strip().lower()
    if db.query(models.User).filter(models.User.email == email).first():
        print(f"User {email} already exists")
        return 1
    if len(args.password) < 6:
        print("Password must be at least 6 characters")
        return 1

    user = models.User(
        email=email,
        hashed_password=auth.get_password_hash(args.password),
        first_name=args.first_name,
        last_name=args.last_name,
    )
    db.add(user)
    db.commit()
    print(f"Created user {user.email} ({user.id})")
    return 0


def cmd_check_user(args, db):
    email = args.email.strip().lower()
    user = db.query(models.User).filter(models.User.email == email).first()
    if not user:
        print(f"User {email} not found")
        return 1

    sessions = db.query(models.TradingSession).filter(models.TradingSession.user_id == user.id).count()
    trades = db.query(models.Trade).filter(models.Trade.user_id == user.id).count()
    subscriptions = db.query(models.Subscription).filter(models.Subscription.user_id == user.id).all()

    print(f"ID:            {user.id}")
    print(f"Email:         {user.email}")
    print(f"Name:          {user.full_name or '-'}")
    print(f"Created:       {user.created_at}")
    print(f"Stripe:        {user.stripe_customer_id or '-'}")
    print(f"Sessions:      {sessions}")
    print(f"Trades:        {trades}")
    for sub in subscriptions:
        print(f"Subscription:  {sub.plan_id} {sub.status} ({sub.stripe_subscription_id})")
    return 0


def cmd_check(args, db):
    report = health.get_full_health(db)
    print(json.dumps(report, indent=2, default=str))
    return 0 if report["overall_status"] != "error" else 1


def build_parser():
    parser = argparse.ArgumentParser(prog="manage.py", description="FlowdeX operator commands")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create missing tables").set_defaults(func=cmd_init_db)

    p = sub.add_parser("create-user", help="create a login")
    p.add_argument("email")
    p.add_argument("password")
    p.add_argument("--first-name")
    p.add_argument("--last-name")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("check-user", help="show a user and their data counts")
    p.add_argument("email")
    p.set_defaults(func=cmd_check_user)

    sub.add_parser("check", help="verify setup and print the health report").set_defaults(func=cmd_check)
    return parser


def main(argv=None, session_factory=None):
    args = build_parser().parse_args(argv)
    config.setup_logging()

    db = (session_factory or database.SessionLocal)()
    try:
        return args.func(args, db)
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
