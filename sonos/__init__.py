# Zone player integration: discovery, control and event subscriptions
