# scripts/mint_token.py
import argparse  # parse CLI args
from pathlib import Path  # output path for the QR image

from eventpass.config import get_settings  # signing secret comes from env/.env
from eventpass.qr import credential_png  # PNG rendering
from eventpass.security import mint_credential  # same codec the API uses


def main() -> None:  # main entrypoint
    parser = argparse.ArgumentParser(description="Mint a registration credential (for scanner testing)")
    parser.add_argument("--user-id", required=True)  # owning user
    parser.add_argument("--event-id", required=True)  # event the credential admits to
    parser.add_argument("--registration-id", required=True)  # registration it is bound to
    parser.add_argument("--png", type=Path, default=None)  # optional QR output file
    args = parser.parse_args()  # parse args

    secret = get_settings().CREDENTIAL_SIGNING_SECRET  # must match the API's secret
    token = mint_credential(args.user_id, args.event_id, args.registration_id, secret)  # sign token

    if args.png is not None:
        args.png.write_bytes(credential_png(token))  # write QR for printing / screen display
    print(token)  # output token to stdout


if __name__ == "__main__":  # run as script
    main()  # call main
