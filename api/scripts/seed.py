import argparse
import random
import sys
import uuid
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.auth.security import create_access_token
from app.gateway import Eq
from app.repo import SqlGateway
from app.services.errors import ConflictError

FIRST_NAMES = ["Ava", "Noah", "Mia", "Leo", "Zoe", "Eli", "Ivy", "Kai", "Nia", "Theo", "Rosa", "Jude"]
CITIES = ["Austin", "Denver", "Chicago", "Seattle"]
GENDERS = ["man", "woman", "nonbinary"]
MENTAL_TAGS = ["overthinker", "night owl", "calm", "curious", "introvert", "chaotic good"]
LOOKING_FOR = ["friendship", "casual", "relationship", "not_sure"]
SONGS = ["Pink + White", "Motion Sickness", "Nights", "Dreams"]


def _demo_profile(rng: random.Random, index: int) -> dict:
    name = FIRST_NAMES[index % len(FIRST_NAMES)]
    return {
        "id": str(uuid.uuid4()),
        "first_name": name,
        "age": rng.randint(19, 40),
        "gender": rng.choice(GENDERS),
        "city": rng.choice(CITIES),
        "bio": f"{name} likes long walks and short texts.",
        "mental_tags": rng.sample(MENTAL_TAGS, k=2),
        "looking_for": [rng.choice(LOOKING_FOR)],
        "instagram_id": f"{name.lower()}.{index}",
        "current_song": rng.choice(SONGS),
        "is_active": True,
        "subscription_ended": False,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo Flintxt profiles and coupons")
    parser.add_argument("--n-users", type=int, default=24)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--coupon", action="append", default=[], help="CODE or CODE:MAX_USES, repeatable")
    parser.add_argument("--print-tokens", action="store_true")
    args = parser.parse_args()

    rng = random.Random(args.seed)
    gateway = SqlGateway()
    created = [gateway.insert("profiles", _demo_profile(rng, i)) for i in range(args.n_users)]

    coupons = 0
    for spec in args.coupon:
        code, _, max_uses = spec.partition(":")
        record = {"code": code.strip().upper(), "max_uses": int(max_uses or 1), "used_count": 0, "is_active": True}
        try:
            gateway.insert("coupons", record)
            coupons += 1
        except ConflictError:
            gateway.update("coupons", [Eq("code", record["code"])], {"max_uses": record["max_uses"], "is_active": True})

    print("Seed completed")
    print(f"- profiles: {len(created)}")
    print(f"- coupons: {coupons}")
    if args.print_tokens:
        for profile in created[:3]:
            print(f"- {profile['first_name']} ({profile['id']}): {create_access_token(profile['id'])}")


if __name__ == "__main__":
    main()
