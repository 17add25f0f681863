"""replyflow — AI reply pipeline for omnichannel customer messaging."""
