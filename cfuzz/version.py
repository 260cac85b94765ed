PACKAGE = "cfuzz"
VERSION = "0.1.0"
WEBSITE = "https://github.com/cfuzz/cfuzz"
LICENSE = "GNU GPL v2"
