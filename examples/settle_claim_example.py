#!/usr/bin/env python3
"""
Example of settling a payment claim with claimsettle.
"""
import os
import json

from claimsettle import Settings, SettlementError, build_application


def main():
    """
    Demonstrate the claim lifecycle.

    This example shows how to:
    1. Build the application from SETTLE_* environment variables
    2. Create a claim and request deposit instructions
    3. Run processing ticks until the claim settles
    """
    recipient = os.environ.get("RECIPIENT_ADDRESS")
    if not recipient:
        print("ERROR: RECIPIENT_ADDRESS environment variable is required")
        return

    settings = Settings.from_env()
    application = build_application(settings)

    try:
        claim = application.claims.create_claim(
            amount="25",
            to_symbol="USDC",
            to_chain="base",
            recipient_address=recipient,
            description="Example claim",
        )
        print(f"Created claim {claim.id}")

        instructions = application.claims.request_deposit(claim.id, "ETH", "arbitrum")
        print("Deposit instructions:")
        print(json.dumps(instructions.model_dump(exclude_none=True), indent=2, default=str))

        input("Send the deposit, then press Enter to process...")
        summary = application.orchestrator.trigger_processing()
        print(json.dumps(summary, indent=2, default=str))

        claim = application.store.get_claim(claim.id)
        print(f"Claim status: {claim.status.value}")
        if claim.attestation_tx_hash:
            print(f"Attestation: {claim.attestation_tx_hash}")

    except SettlementError as e:
        print(f"Error settling claim: {e}")
    finally:
        application.close()


if __name__ == "__main__":
    main()
