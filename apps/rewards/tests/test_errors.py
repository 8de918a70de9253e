from karma_rewards.errors import RemoteRejectedError, describe_transfer_error


def test_underflow_rejection_is_translated():
    error = RemoteRejectedError(
        "TransactionPool.Remember: transaction ABC123: underflow on subtracting 500 from sender amount 20"
    )

    assert describe_transfer_error(error) == (
        "Insufficient funds: Tried to subtract 500 from sender amount 20 in transaction ABC123"
    )


def test_missing_asset_rejection_is_translated():
    error = RemoteRejectedError("TransactionPool.Remember: transaction TX9: asset 1088771340 missing from WALLET7")

    assert describe_transfer_error(error) == (
        "Missing asset: Asset 1088771340 missing from WALLET7 in transaction TX9"
    )


def test_other_errors_pass_through():
    assert describe_transfer_error(RuntimeError("node offline")) == "node offline"
