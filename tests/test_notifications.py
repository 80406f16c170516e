from compendium.notifications import ToastChannel


def test_latest_message_replaces_prior():
    toasts = ToastChannel()
    toasts.success("Biography saved.")
    toasts.error("Could not save your changes. Try again.")

    toast = toasts.consume()

    assert toast.level == "error"
    assert toast.message.startswith("Could not save")
    assert toasts.consume() is None


def test_empty_message_is_ignored():
    toasts = ToastChannel()
    toasts.info("Pick a document first.")
    toasts.info("")
    assert toasts.latest.message == "Pick a document first."
